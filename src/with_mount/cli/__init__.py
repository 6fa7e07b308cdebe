"""Command line interface for with-mount."""
