"""Utility helpers for mridefacer."""
