"""Command line interface (``storj`` console script)."""
