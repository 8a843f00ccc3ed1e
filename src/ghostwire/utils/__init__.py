"""Utility helpers shared across Ghostwire."""
