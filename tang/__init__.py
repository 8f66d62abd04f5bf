"""tang - a self-hosted CI relay for GitHub push events."""

__version__ = "0.3.0"
