"""Logging and shared utilities."""
