"""Frame persistence and run metadata."""
