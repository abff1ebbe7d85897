"""Data models for the notegraph engine."""
