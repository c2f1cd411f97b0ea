"""Command-line interface (``contract-spine``)."""
