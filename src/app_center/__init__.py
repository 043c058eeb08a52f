"""Self-hosted app center: managed containers driven by tracked background tasks."""

__version__ = "0.3.0"
