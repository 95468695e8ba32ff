"""Command-line interface for the realtime messaging service."""
