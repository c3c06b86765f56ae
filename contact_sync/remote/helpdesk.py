"""
Helpdesk REST API integration module.

Implements the ContactAPIBase interface for a helpdesk/CRM contact API that
exposes contacts and clients as JSON resources:

    GET  /contacts?email=...     search contacts by email
    POST /contacts               create a contact
    PUT  /contacts/{id}          update a contact
    GET  /clients                list clients
"""

import logging
from typing import Dict, List, Any

from .base import ContactAPIBase, ContactAPIError

logger = logging.getLogger(__name__)


# Standardized contact key -> helpdesk payload field
DEFAULT_FIELD_MAPPING = {
    'name': 'name',
    'email': 'email',
    'title': 'title',
    'department': 'department',
    'phone': 'phone',
    'mobile': 'mobile',
    'extension': 'extension',
    'client_id': 'client_id',
}

# Keys a list response may wrap its items in
LIST_KEYS = ('contacts', 'clients', 'items', 'data', 'results')


class HelpdeskContactAPI(ContactAPIBase):
    """
    Helpdesk contact API client.

    Translates between standardized contact dictionaries and the helpdesk's
    JSON payloads.
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)

        self.update_method = str(config.get('update_method', 'PUT')).upper()
        self.field_mapping = dict(DEFAULT_FIELD_MAPPING)
        self.field_mapping.update(config.get('field_mapping') or {})

        logger.info(f"Initialized helpdesk API client for {self.name}")

    def find_contacts_by_email(self, email: str) -> List[Dict[str, Any]]:
        response = self.request('GET', '/contacts', params={'email': email})
        email_field = self.field_mapping['email']

        contacts = []
        for item in _unwrap_list(response):
            contact = self._from_payload(item)
            # Some APIs treat the email filter as a substring search
            if str(item.get(email_field, '')).strip().lower() != email.strip().lower():
                continue
            contacts.append(contact)

        logger.debug(f"Found {len(contacts)} contacts for {email} in {self.name}")
        return contacts

    def create_contact(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        if not contact.get('client_id'):
            raise ContactAPIError(f"Cannot create contact {contact.get('email')} without a client id")

        response = self.request('POST', '/contacts', body=self._to_payload(contact))
        created = self._from_payload(response) if isinstance(response, dict) else {}
        logger.debug(f"Created contact {contact.get('email')} with ID {created.get('id')} in {self.name}")
        return created

    def update_contact(self, contact_id: Any, contact: Dict[str, Any]) -> Dict[str, Any]:
        if contact_id in (None, ''):
            raise ContactAPIError(f"Cannot update contact {contact.get('email')} without an id")

        payload = self._to_payload(contact)
        response = self.request(self.update_method, f'/contacts/{contact_id}', body=payload)
        return self._from_payload(response) if isinstance(response, dict) else {}

    def list_clients(self) -> List[Dict[str, Any]]:
        response = self.request('GET', '/clients')

        clients = []
        for item in _unwrap_list(response):
            client_id = item.get('id', item.get('client_id'))
            if client_id in (None, ''):
                logger.warning(f"Client entry without id skipped: {item}")
                continue
            clients.append({
                'id': client_id,
                'name': item.get('name', item.get('client_name', str(client_id)))
            })

        logger.info(f"Retrieved {len(clients)} clients from {self.name}")
        return clients

    def _to_payload(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        """
        Map standardized keys to API fields.

        Keys missing from the contact (or None) are left out. Empty strings
        are sent so that values removed in the directory are cleared remotely.
        """
        payload = {}
        for key, api_field in self.field_mapping.items():
            value = contact.get(key)
            if value is None:
                continue
            payload[api_field] = value
        return payload

    def _from_payload(self, item: Dict[str, Any]) -> Dict[str, Any]:
        contact = {'id': item.get('id', item.get('contact_id'))}
        for key, api_field in self.field_mapping.items():
            contact[key] = item.get(api_field, '')
        return contact


def _unwrap_list(response: Any) -> List[Dict[str, Any]]:
    if isinstance(response, list):
        return response
    if isinstance(response, dict):
        for key in LIST_KEYS:
            if isinstance(response.get(key), list):
                return response[key]
        return []
    raise ContactAPIError(f"Unexpected response type: {type(response).__name__}")


def create_contact_api(config: Dict[str, Any]) -> HelpdeskContactAPI:
    """
    Factory function to create a HelpdeskContactAPI instance.

    Args:
        config: remote_api configuration dictionary

    Returns:
        HelpdeskContactAPI instance
    """
    return HelpdeskContactAPI(config)
