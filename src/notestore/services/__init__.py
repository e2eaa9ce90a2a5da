"""Service layer for the note storage engine."""
