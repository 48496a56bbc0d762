"""Audit trail emission."""
