"""Sync engine: orchestration, checkpointing and concurrent record processing."""
