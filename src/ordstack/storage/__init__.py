"""Persistent storage for ordstack state and ord's on-disk data."""
