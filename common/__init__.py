"""Shared constants and logging configuration."""
