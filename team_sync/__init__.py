"""
Team User Sync - Deprovision team accounts that no longer exist in the authority directory.

This package compares the accounts of an authority directory (Google Workspace,
LDAP) with the accounts of a target team directory (Dropbox Business) and removes
target accounts the authority no longer knows about.
"""

__version__ = "1.0.0"
__author__ = "Team Sync Team"
