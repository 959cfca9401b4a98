"""Command-line interface for HostCA."""
