"""Kernel services -- flush-only writers inside the caller's transaction."""
