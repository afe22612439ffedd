"""Moderation gates consulted before writes."""
