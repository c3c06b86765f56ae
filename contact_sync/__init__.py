"""
Contact Sync - Reconcile directory users with a helpdesk/CRM contact API.

This package reads enabled user accounts from an LDAP directory and creates or
updates the matching contacts in a remote helpdesk system via its REST API.
"""

__version__ = "1.0.0"
__author__ = "Contact Sync Team"
