"""Audit trail of app operations."""
