"""REST endpoint modules."""
