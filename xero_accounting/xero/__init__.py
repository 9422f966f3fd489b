"""Xero Accounting API access: auth, tenant resolution, client and models."""
