"""Utilities - broker clients."""
