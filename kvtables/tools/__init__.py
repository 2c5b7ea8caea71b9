"""Command-line tools for kvtables."""
