"""HTTP surface and wire models."""
