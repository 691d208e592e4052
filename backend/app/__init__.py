"""
Application package for the FIDI chat backend.

This package contains:
- settings: configuration loaded from environment / .env
- logging_config: shared logging setup
- chat: model registry, fallback chains, message adapters, error
  classification and the streaming orchestrator
- services: credit ledger, per-user locks, media generation
- upstream: OpenRouter streaming client
- routes: FastAPI app factory and HTTP endpoints
"""
