"""Frozen sweep DTOs."""
