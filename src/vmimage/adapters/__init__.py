"""Adapters for vmimage ports."""
