"""Activity log and usage reports."""
