"""Workflow logging."""
