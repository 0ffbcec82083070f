"""Catalog, approval registry, audit log, conversation context and storage."""
