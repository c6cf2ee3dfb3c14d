"""Command-line interface for bulkflow."""
