"""Command-line tools for dlkit."""
