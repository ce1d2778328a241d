"""Core modules for storjcli."""
