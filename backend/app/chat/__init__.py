"""Streaming chat pipeline: model lookups, message adaptation, error classification, orchestration."""
