"""Patch mirror server: on-demand zip chunks over a synced repository."""
