"""Domain models and persistence tables."""
