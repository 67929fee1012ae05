"""Outreach queue and call-lifecycle orchestration backend."""
