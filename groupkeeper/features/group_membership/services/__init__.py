"""Add and remove flows plus their roster and persistence helpers."""
