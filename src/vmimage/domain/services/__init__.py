"""Domain services: digests, packaging and progress streams."""
