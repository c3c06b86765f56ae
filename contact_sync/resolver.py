"""
Client resolution from directory distinguished names.
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def resolve_client(dn: str, mapping: Dict[str, Any]) -> Optional[Any]:
    """
    Find the client a directory record belongs to.

    Mapping keys are matched as plain substrings of the DN, in the order they
    appear in the configuration. The first matching key wins.

    Args:
        dn: Distinguished name of the directory record
        mapping: DN substring -> client id

    Returns:
        Client id, or None when no key occurs in the DN
    """
    if not dn or not mapping:
        return None

    for pattern, client_id in mapping.items():
        if pattern and pattern in dn:
            logger.debug(f"DN {dn} matched client mapping '{pattern}' -> {client_id}")
            return client_id

    return None
