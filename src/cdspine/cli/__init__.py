"""Command line interface for cd-spine."""
