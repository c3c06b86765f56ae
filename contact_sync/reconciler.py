"""
Reconciliation of directory records against the remote contact API.

Existing contacts (matched by email) are updated in a first pass; the rest are
queued and created in a second pass once their client has been resolved from
the DN mapping or chosen by the operator.
"""

import logging
from typing import Any, Dict, List, Optional

from contact_sync.exclusions import ExclusionList
from contact_sync.prompt import ClientPrompt, PromptAborted
from contact_sync.remote.base import ContactAPIBase
from contact_sync.resolver import resolve_client
from contact_sync.transform import build_contact_payload

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Creates or updates one remote contact per directory record.

    Every remote call is guarded on its own: a failure is logged and only
    abandons the record it belongs to.
    """

    def __init__(self, api: ContactAPIBase, client_mapping: Dict[str, Any],
                 phone_settings: Dict[str, Any], exclusions: ExclusionList,
                 prompt: Optional[ClientPrompt] = None, dry_run: bool = False):
        """
        Args:
            api: Remote contact API
            client_mapping: DN substring -> client id
            phone_settings: 'country_prefix' and 'replacement'
            exclusions: Loaded exclusion list
            prompt: Operator prompt; None disables interactive selection
            dry_run: Log planned changes without sending them
        """
        self.api = api
        self.client_mapping = client_mapping or {}
        self.phone_settings = phone_settings or {}
        self.exclusions = exclusions
        self.prompt = prompt
        self.dry_run = dry_run

        self._clients = None

        self.stats = {
            'records_total': 0,
            'records_skipped_no_email': 0,
            'contacts_updated': 0,
            'contacts_created': 0,
            'contacts_excluded': 0,
            'contacts_declined': 0,
            'contacts_unresolved': 0,
            'contacts_ambiguous': 0,
            'duplicate_emails': 0,
            'planned_updates': 0,
            'planned_creates': 0,
            'errors': 0
        }

    def reconcile(self, records: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Run both passes over the directory records.

        Args:
            records: Directory records

        Returns:
            Statistics dictionary
        """
        new_records = []
        # Normalized emails already handled in this run
        seen = set()

        for record in records:
            self.stats['records_total'] += 1
            email = (record.get('email') or '').strip()
            if not email:
                self.stats['records_skipped_no_email'] += 1
                logger.debug(f"Skipping {record.get('dn') or record.get('display_name')}: no email")
                continue

            key = email.lower()
            if key in seen:
                self.stats['duplicate_emails'] += 1
                logger.warning(f"Skipping {record.get('dn') or email}: email {email} already used by another directory record")
                continue
            seen.add(key)

            if self._sync_existing(record, email):
                continue
            new_records.append(record)

        logger.info(f"{len(new_records)} directory records have no remote contact")

        for record in new_records:
            self._create_new(record, record['email'].strip())

        return self.stats

    def _sync_existing(self, record: Dict[str, Any], email: str) -> bool:
        """
        Update the record's remote contact if exactly one exists.

        Returns:
            False when the record should be queued for creation
        """
        try:
            matches = self.api.find_contacts_by_email(email)
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"Failed to look up contact {email}: {e}")
            return True

        if not matches:
            return False

        if len(matches) > 1:
            self.stats['contacts_ambiguous'] += 1
            ids = ', '.join(str(match.get('id')) for match in matches)
            logger.warning(f"Skipping {email}: {len(matches)} remote contacts share this email ({ids})")
            return True

        contact_id = matches[0].get('id')
        contact = build_contact_payload(record, self.phone_settings)

        if self.dry_run:
            logger.info(f"[dry-run] Would update contact {email} (ID {contact_id})")
            self.stats['planned_updates'] += 1
            return True

        try:
            self.api.update_contact(contact_id, contact)
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"Failed to update contact {email} (ID {contact_id}): {e}")
            return True

        self.stats['contacts_updated'] += 1
        logger.info(f"Updated contact {email} (ID {contact_id})")
        return True

    def _create_new(self, record: Dict[str, Any], email: str):
        if email in self.exclusions:
            self.stats['contacts_excluded'] += 1
            logger.debug(f"Skipping excluded email {email}")
            return

        client_id = resolve_client(record.get('dn', ''), self.client_mapping)

        if client_id is None:
            if self.dry_run:
                self.stats['contacts_unresolved'] += 1
                logger.info(f"[dry-run] Would ask for the client of {email}")
                return

            if self.prompt is None:
                self.stats['contacts_unresolved'] += 1
                logger.warning(f"No client mapping for {email} ({record.get('dn', '')}), skipping")
                return

            clients = self._get_clients()
            if clients is None:
                self.stats['errors'] += 1
                return

            try:
                client_id = self.prompt.choose(record, clients)
            except PromptAborted:
                logger.warning("Operator input closed, remaining unmapped contacts will be skipped")
                self.prompt = None
                self.stats['contacts_unresolved'] += 1
                return

            if client_id is None:
                self.stats['contacts_declined'] += 1
                try:
                    self.exclusions.add(email)
                except OSError as e:
                    self.stats['errors'] += 1
                    logger.error(f"Failed to record exclusion for {email}: {e}")
                return

        contact = build_contact_payload(record, self.phone_settings, client_id)

        if self.dry_run:
            logger.info(f"[dry-run] Would create contact {email} for client {client_id}")
            self.stats['planned_creates'] += 1
            return

        try:
            created = self.api.create_contact(contact)
        except Exception as e:
            self.stats['errors'] += 1
            logger.error(f"Failed to create contact {email}: {e}")
            return

        self.stats['contacts_created'] += 1
        logger.info(f"Created contact {email} for client {client_id} (ID {(created or {}).get('id')})")

    def _get_clients(self) -> Optional[List[Dict[str, Any]]]:
        """Fetch the client list once per run; None if the fetch failed."""
        if self._clients is not None:
            return self._clients

        try:
            self._clients = self.api.list_clients()
        except Exception as e:
            logger.error(f"Failed to retrieve client list: {e}")
            return None

        return self._clients
