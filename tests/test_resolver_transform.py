#!/usr/bin/env python3
"""
Tests for DN-based client resolution and contact field transformation.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from contact_sync.resolver import resolve_client
from contact_sync.transform import normalize_phone, build_contact_payload


class TestResolveClient(unittest.TestCase):

    def setUp(self):
        self.mapping = {
            'OU=Sales': 101,
            'OU=Engineering': 102,
            'OU=Contractors,OU=Engineering': 103,
        }

    def test_mapped_substring_returns_client(self):
        self.assertEqual(resolve_client('CN=Jane Doe,OU=Sales,DC=example,DC=com', self.mapping), 101)
        self.assertEqual(resolve_client('CN=Bob,OU=Engineering,DC=example,DC=com', self.mapping), 102)

    def test_no_match_returns_none(self):
        self.assertIsNone(resolve_client('CN=Ann,OU=Finance,DC=example,DC=com', self.mapping))

    def test_match_is_case_sensitive_substring(self):
        self.assertIsNone(resolve_client('CN=Ann,ou=sales,DC=example,DC=com', self.mapping))

    def test_first_configured_key_wins(self):
        dn = 'CN=Carl,OU=Contractors,OU=Engineering,DC=example,DC=com'
        self.assertEqual(resolve_client(dn, self.mapping), 102)

        reordered = {
            'OU=Contractors,OU=Engineering': 103,
            'OU=Engineering': 102,
        }
        self.assertEqual(resolve_client(dn, reordered), 103)

    def test_empty_inputs(self):
        self.assertIsNone(resolve_client('', self.mapping))
        self.assertIsNone(resolve_client('CN=Jane,OU=Sales', {}))
        self.assertIsNone(resolve_client('CN=Jane,OU=Sales', None))


class TestNormalizePhone(unittest.TestCase):

    def test_prefix_replaced(self):
        self.assertEqual(normalize_phone('+44 20 7946 0000', '+44', '0'), '0 20 7946 0000')
        self.assertEqual(normalize_phone('+447700900000', '+44', '0'), '07700900000')

    def test_prefix_replaced_once(self):
        self.assertEqual(normalize_phone('+44+44', '+44', '0'), '0+44')

    def test_other_numbers_unchanged(self):
        self.assertEqual(normalize_phone('020 7946 0000', '+44', '0'), '020 7946 0000')
        self.assertEqual(normalize_phone('+1 555 0100', '+44', '0'), '+1 555 0100')
        self.assertEqual(normalize_phone('0044 20 7946', '+44', '0'), '0044 20 7946')

    def test_surrounding_whitespace_stripped(self):
        self.assertEqual(normalize_phone('  +44 1234 ', '+44', '0'), '0 1234')

    def test_missing_number(self):
        self.assertEqual(normalize_phone(None, '+44', '0'), '')
        self.assertEqual(normalize_phone('', '+44', '0'), '')

    def test_no_prefix_configured(self):
        self.assertEqual(normalize_phone('+44 1234', '', ''), '+44 1234')


class TestBuildContactPayload(unittest.TestCase):

    def setUp(self):
        self.record = {
            'display_name': 'Jane Doe',
            'email': ' jane@x.com ',
            'title': 'Account Manager',
            'department': 'Sales',
            'phone': '+44 20 7946 0000',
            'mobile': '+44 7700 900000',
            'extension': '1234',
            'dn': 'CN=Jane Doe,OU=Sales,DC=example,DC=com'
        }
        self.phone_settings = {'country_prefix': '+44', 'replacement': '0'}

    def test_fields_mapped_and_normalized(self):
        contact = build_contact_payload(self.record, self.phone_settings, client_id=101)
        self.assertEqual(contact, {
            'name': 'Jane Doe',
            'email': 'jane@x.com',
            'title': 'Account Manager',
            'department': 'Sales',
            'phone': '0 20 7946 0000',
            'mobile': '0 7700 900000',
            'extension': '1234',
            'client_id': 101
        })

    def test_client_omitted_for_updates(self):
        contact = build_contact_payload(self.record, self.phone_settings)
        self.assertNotIn('client_id', contact)

    def test_missing_attributes_become_empty_strings(self):
        record = dict(self.record, title=None, mobile=None)
        del record['department']

        contact = build_contact_payload(record, self.phone_settings)

        self.assertEqual(contact['title'], '')
        self.assertEqual(contact['department'], '')
        self.assertEqual(contact['mobile'], '')

    def test_empty_phone_settings(self):
        contact = build_contact_payload(self.record, {})
        self.assertEqual(contact['phone'], '+44 20 7946 0000')


if __name__ == '__main__':
    unittest.main()
