"""Managed app catalog, container specs and provisioning."""
