"""Catalog parsing, join engine and pipeline orchestration."""
