"""Checkpoint application package."""
