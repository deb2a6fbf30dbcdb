"""Shared helpers: logging, configuration, persistence and threading."""
