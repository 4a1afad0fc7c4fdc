"""Utility helpers for the workflow kernel."""
