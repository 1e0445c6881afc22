"""Catalog download, archive expansion, result output and run directories."""
