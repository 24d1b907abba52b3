"""Vendor directory integrations."""
