"""Diabetes self-management backend: health event logging, statistics and advisories."""
