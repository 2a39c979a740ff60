"""Intelligence layer module."""
