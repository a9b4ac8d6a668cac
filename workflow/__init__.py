"""Monthly report submission and review."""
