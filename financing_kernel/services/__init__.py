"""Kernel service infrastructure."""
