"""Port interfaces for vmimage."""
