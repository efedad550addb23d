"""Migrate a PVC to a new storage class or size while keeping its name."""

__version__ = "0.1.0"
