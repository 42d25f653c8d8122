"""vmimage domain layer."""
