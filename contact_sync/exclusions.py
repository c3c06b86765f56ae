"""
Persistent list of emails the operator chose not to create as contacts.

The file holds one email per line and is only ever appended to.
"""

import os
import logging
from typing import Iterator, Set

logger = logging.getLogger(__name__)


class ExclusionList:
    """Append-only set of excluded emails backed by a flat file."""

    def __init__(self, path: str):
        self.path = path
        self._emails: Set[str] = set()
        self.loaded = False

    @staticmethod
    def _normalize(email: str) -> str:
        return (email or '').strip().lower()

    def load(self) -> 'ExclusionList':
        """
        Read the exclusion file. A missing file is an empty list.

        Returns:
            self, for chaining
        """
        self._emails = set()
        if os.path.exists(self.path):
            with open(self.path, 'r', encoding='utf-8') as f:
                for line in f:
                    email = self._normalize(line)
                    if email:
                        self._emails.add(email)
            logger.info(f"Loaded {len(self._emails)} excluded emails from {self.path}")
        else:
            logger.debug(f"Exclusion file {self.path} does not exist yet")

        self.loaded = True
        return self

    def add(self, email: str) -> bool:
        """
        Append an email to the file.

        Returns:
            True if the email was new, False if it was already excluded
        """
        normalized = self._normalize(email)
        if not normalized or normalized in self._emails:
            return False

        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        with open(self.path, 'a', encoding='utf-8') as f:
            f.write(normalized + '\n')

        self._emails.add(normalized)
        logger.info(f"Added {normalized} to exclusion list")
        return True

    def __contains__(self, email: str) -> bool:
        return self._normalize(email) in self._emails

    def __len__(self) -> int:
        return len(self._emails)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._emails))
