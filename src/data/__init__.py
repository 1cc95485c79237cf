"""Data utilities package."""
