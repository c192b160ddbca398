"""Checkpoint: distributed token bucket rate limiting."""
