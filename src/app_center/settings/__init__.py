"""Integration settings persisted in the settings table."""
