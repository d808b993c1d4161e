"""Top-level orchestration."""
