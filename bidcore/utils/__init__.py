"""Logging and input validation helpers."""
