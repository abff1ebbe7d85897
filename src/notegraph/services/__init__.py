"""Service layer for the notegraph engine."""
