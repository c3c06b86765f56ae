"""
Transformation of directory records into remote contact fields.
"""

from typing import Any, Dict, Optional


def normalize_phone(number: Optional[str], country_prefix: str, replacement: str) -> str:
    """
    Rewrite a leading country prefix.

    Args:
        number: Phone number as stored in the directory
        country_prefix: Prefix to look for, e.g. '+44'
        replacement: Text substituted for the prefix, e.g. '0'

    Returns:
        The rewritten number, the stripped original when the prefix does not
        apply, or '' for a missing number
    """
    if not number:
        return ''

    number = str(number).strip()
    if country_prefix and number.startswith(country_prefix):
        return replacement + number[len(country_prefix):]
    return number


def build_contact_payload(record: Dict[str, Any], phone_settings: Dict[str, Any],
                          client_id: Optional[Any] = None) -> Dict[str, Any]:
    """
    Build the remote contact fields for a directory record.

    Args:
        record: Directory record
        phone_settings: 'country_prefix' and 'replacement'
        client_id: Owning client, omitted from the result when None

    Returns:
        Standardized contact dictionary
    """
    prefix = phone_settings.get('country_prefix') or ''
    replacement = phone_settings.get('replacement') or ''

    contact = {
        'name': record.get('display_name') or '',
        'email': (record.get('email') or '').strip(),
        'title': record.get('title') or '',
        'department': record.get('department') or '',
        'phone': normalize_phone(record.get('phone'), prefix, replacement),
        'mobile': normalize_phone(record.get('mobile'), prefix, replacement),
        'extension': record.get('extension') or '',
    }

    if client_id is not None:
        contact['client_id'] = client_id

    return contact
