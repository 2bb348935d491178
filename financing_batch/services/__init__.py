"""Sweep execution service."""
