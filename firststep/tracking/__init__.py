"""Buffered event tracking."""
