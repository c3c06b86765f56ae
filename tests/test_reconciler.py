#!/usr/bin/env python3
"""
Tests for the reconciliation pass.

Uses an in-memory ContactAPIBase implementation that records every call.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from contact_sync.exclusions import ExclusionList
from contact_sync.prompt import ClientPrompt, PromptAborted
from contact_sync.reconciler import Reconciler
from contact_sync.remote.base import ContactAPIBase, ContactAPIError


class FakeContactAPI(ContactAPIBase):
    """In-memory contact API recording creates and updates."""

    def __init__(self, contacts=None, clients=None):
        super().__init__({
            'name': 'fake',
            'base_url': 'http://fake.local',
            'auth': {'method': 'api_key_header', 'api_key': 'key'}
        })
        self.contacts = list(contacts or [])
        self.clients = list(clients or [])
        self.created = []
        self.updated = []
        self.client_list_calls = 0
        self.fail_lookup_for = set()
        self.fail_create_for = set()
        self.fail_update_for = set()
        self.fail_client_list = False

    def find_contacts_by_email(self, email):
        if email in self.fail_lookup_for:
            raise ContactAPIError(f"lookup failed for {email}")
        return [c for c in self.contacts if c['email'] == email]

    def create_contact(self, contact):
        if contact['email'] in self.fail_create_for:
            raise ContactAPIError("HTTP 500: Server Error", 500)
        self.created.append(contact)
        return dict(contact, id=1000 + len(self.created))

    def update_contact(self, contact_id, contact):
        if contact['email'] in self.fail_update_for:
            raise ContactAPIError("HTTP 500: Server Error", 500)
        self.updated.append((contact_id, contact))
        return dict(contact, id=contact_id)

    def list_clients(self):
        self.client_list_calls += 1
        if self.fail_client_list:
            raise ContactAPIError("HTTP 503: Service Unavailable", 503)
        return self.clients


def _record(name, email, dn, **extra):
    record = {
        'display_name': name, 'email': email, 'title': '', 'department': '',
        'phone': '', 'mobile': '', 'extension': '', 'dn': dn
    }
    record.update(extra)
    return record


class TestReconciler(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp(prefix='contact_sync_reconcile_')
        self.exclusions = ExclusionList(os.path.join(self.temp_dir, 'excluded.txt')).load()
        self.api = FakeContactAPI(clients=[{'id': 101, 'name': 'Acme'}, {'id': 201, 'name': 'Initech'}])
        self.mapping = {'OU=Sales': 101}
        self.phone = {'country_prefix': '+44', 'replacement': '0'}

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _reconciler(self, prompt=None, dry_run=False):
        return Reconciler(self.api, self.mapping, self.phone, self.exclusions, prompt=prompt, dry_run=dry_run)

    def _prompt(self, *answers):
        prompt = Mock(spec=ClientPrompt)
        prompt.choose.side_effect = list(answers)
        return prompt

    def test_new_mapped_record_creates_once_with_mapped_client(self):
        jane = _record('Jane Doe', 'jane@x.com', 'CN=Jane Doe,OU=Sales,DC=example,DC=com')

        stats = self._reconciler().reconcile([jane])

        self.assertEqual(len(self.api.created), 1)
        self.assertEqual(self.api.created[0]['client_id'], 101)
        self.assertEqual(self.api.created[0]['name'], 'Jane Doe')
        self.assertEqual(self.api.updated, [])
        self.assertEqual(stats['contacts_created'], 1)
        self.assertEqual(stats['errors'], 0)

    def test_existing_contact_is_updated_not_created(self):
        self.api.contacts = [{'id': 7, 'email': 'jane@x.com', 'client_id': 999}]
        jane = _record('Jane Doe', 'jane@x.com', 'CN=Jane Doe,OU=Sales,DC=example,DC=com',
                       phone='+44 20 7946 0000', mobile='07700 900000')

        stats = self._reconciler().reconcile([jane])

        self.assertEqual(self.api.created, [])
        self.assertEqual(len(self.api.updated), 1)
        contact_id, contact = self.api.updated[0]
        self.assertEqual(contact_id, 7)
        self.assertEqual(contact['phone'], '0 20 7946 0000')
        self.assertEqual(contact['mobile'], '07700 900000')
        self.assertNotIn('client_id', contact)
        self.assertEqual(stats['contacts_updated'], 1)

    def test_records_without_email_are_skipped(self):
        stats = self._reconciler().reconcile([_record('No Mail', '', 'CN=No Mail,OU=Sales')])

        self.assertEqual(stats['records_skipped_no_email'], 1)
        self.assertEqual(self.api.created, [])

    def test_ambiguous_email_is_skipped(self):
        self.api.contacts = [{'id': 1, 'email': 'jane@x.com'}, {'id': 2, 'email': 'jane@x.com'}]

        stats = self._reconciler().reconcile([_record('Jane', 'jane@x.com', 'CN=Jane,OU=Sales')])

        self.assertEqual(stats['contacts_ambiguous'], 1)
        self.assertEqual(self.api.created, [])
        self.assertEqual(self.api.updated, [])

    def test_excluded_email_never_prompts_or_creates(self):
        self.exclusions.add('ann@x.com')
        self.exclusions.add('jane@x.com')
        prompt = self._prompt(201)

        stats = self._reconciler(prompt=prompt).reconcile([
            _record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance'),
            _record('Jane', 'Jane@x.com', 'CN=Jane,OU=Sales'),
        ])

        prompt.choose.assert_not_called()
        self.assertEqual(self.api.created, [])
        self.assertEqual(self.api.client_list_calls, 0)
        self.assertEqual(stats['contacts_excluded'], 2)

    def test_unmapped_record_uses_prompted_client(self):
        prompt = self._prompt(201)
        ann = _record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance')

        self._reconciler(prompt=prompt).reconcile([ann])

        prompt.choose.assert_called_once_with(ann, self.api.clients)
        self.assertEqual(self.api.created[0]['client_id'], 201)

    def test_declined_prompt_records_exclusion(self):
        prompt = self._prompt(None)

        stats = self._reconciler(prompt=prompt).reconcile([_record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance')])

        self.assertEqual(self.api.created, [])
        self.assertIn('ann@x.com', self.exclusions)
        self.assertIn('ann@x.com', ExclusionList(self.exclusions.path).load())
        self.assertEqual(stats['contacts_declined'], 1)

    def test_client_list_fetched_once(self):
        prompt = self._prompt(201, 101)

        self._reconciler(prompt=prompt).reconcile([
            _record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance'),
            _record('Bob', 'bob@x.com', 'CN=Bob,OU=Legal'),
        ])

        self.assertEqual(self.api.client_list_calls, 1)
        self.assertEqual([c['client_id'] for c in self.api.created], [201, 101])

    def test_without_prompt_unmapped_records_are_skipped(self):
        stats = self._reconciler(prompt=None).reconcile([_record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance')])

        self.assertEqual(self.api.created, [])
        self.assertEqual(stats['contacts_unresolved'], 1)
        self.assertNotIn('ann@x.com', self.exclusions)

    def test_prompt_abort_disables_further_prompts(self):
        prompt = self._prompt(PromptAborted('closed'))

        stats = self._reconciler(prompt=prompt).reconcile([
            _record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance'),
            _record('Bob', 'bob@x.com', 'CN=Bob,OU=Legal'),
            _record('Jane', 'jane@x.com', 'CN=Jane,OU=Sales'),
        ])

        self.assertEqual(prompt.choose.call_count, 1)
        self.assertEqual(stats['contacts_unresolved'], 2)
        self.assertEqual(len(self.exclusions), 0)
        self.assertEqual([c['email'] for c in self.api.created], ['jane@x.com'])

    def test_lookup_failure_only_abandons_that_record(self):
        self.api.fail_lookup_for = {'bad@x.com'}

        stats = self._reconciler().reconcile([
            _record('Bad', 'bad@x.com', 'CN=Bad,OU=Sales'),
            _record('Jane', 'jane@x.com', 'CN=Jane,OU=Sales'),
        ])

        self.assertEqual(stats['errors'], 1)
        self.assertEqual([c['email'] for c in self.api.created], ['jane@x.com'])

    def test_create_and_update_failures_are_not_retried(self):
        self.api.contacts = [{'id': 3, 'email': 'old@x.com'}]
        self.api.fail_update_for = {'old@x.com'}
        self.api.fail_create_for = {'new@x.com'}

        stats = self._reconciler().reconcile([
            _record('Old', 'old@x.com', 'CN=Old,OU=Sales'),
            _record('New', 'new@x.com', 'CN=New,OU=Sales'),
            _record('Jane', 'jane@x.com', 'CN=Jane,OU=Sales'),
        ])

        self.assertEqual(stats['errors'], 2)
        self.assertEqual(stats['contacts_updated'], 0)
        self.assertEqual([c['email'] for c in self.api.created], ['jane@x.com'])

    def test_client_list_failure_skips_record(self):
        self.api.fail_client_list = True
        prompt = self._prompt(201)

        stats = self._reconciler(prompt=prompt).reconcile([_record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance')])

        prompt.choose.assert_not_called()
        self.assertEqual(stats['errors'], 1)
        self.assertEqual(self.api.created, [])

    def test_dry_run_sends_nothing(self):
        self.api.contacts = [{'id': 7, 'email': 'old@x.com'}]
        prompt = self._prompt(None)

        stats = self._reconciler(prompt=prompt, dry_run=True).reconcile([
            _record('Old', 'old@x.com', 'CN=Old,OU=Sales'),
            _record('Jane', 'jane@x.com', 'CN=Jane,OU=Sales'),
            _record('Ann', 'ann@x.com', 'CN=Ann,OU=Finance'),
        ])

        self.assertEqual(self.api.created, [])
        self.assertEqual(self.api.updated, [])
        prompt.choose.assert_not_called()
        self.assertEqual(len(self.exclusions), 0)
        self.assertEqual(stats['contacts_updated'], 0)
        self.assertEqual(stats['contacts_created'], 0)
        self.assertEqual(stats['planned_updates'], 1)
        self.assertEqual(stats['planned_creates'], 1)
        self.assertEqual(stats['contacts_unresolved'], 1)

    def test_same_email_on_two_records_creates_one_contact(self):
        stats = self._reconciler().reconcile([
            _record('Jane Doe', 'jane@x.com', 'CN=Jane Doe,OU=Sales,DC=example,DC=com'),
            _record('Jane Doe (admin)', 'JANE@x.com ', 'CN=Jane Admin,OU=Sales,DC=example,DC=com'),
        ])

        self.assertEqual(len(self.api.created), 1)
        self.assertEqual(self.api.created[0]['email'], 'jane@x.com')
        self.assertEqual(stats['contacts_created'], 1)
        self.assertEqual(stats['duplicate_emails'], 1)

    def test_same_email_on_two_records_updates_existing_contact_once(self):
        self.api.contacts = [{'id': 7, 'email': 'jane@x.com'}]

        stats = self._reconciler().reconcile([
            _record('Jane Doe', 'jane@x.com', 'CN=Jane Doe,OU=Sales'),
            _record('Jane Doe', 'jane@x.com', 'CN=Jane Doe,OU=Archive'),
        ])

        self.assertEqual(len(self.api.updated), 1)
        self.assertEqual(self.api.created, [])
        self.assertEqual(stats['duplicate_emails'], 1)

    def test_updates_happen_before_creates(self):
        self.api.contacts = [{'id': 7, 'email': 'old@x.com'}]
        calls = []
        original_create, original_update = self.api.create_contact, self.api.update_contact
        self.api.create_contact = lambda c: calls.append('create') or original_create(c)
        self.api.update_contact = lambda i, c: calls.append('update') or original_update(i, c)

        self._reconciler().reconcile([
            _record('Jane', 'jane@x.com', 'CN=Jane,OU=Sales'),
            _record('Old', 'old@x.com', 'CN=Old,OU=Sales'),
        ])

        self.assertEqual(calls, ['update', 'create'])


if __name__ == '__main__':
    unittest.main()
