"""Persistence layer: mirrors engine snapshots to a storage adapter."""
