"""Integration tests for recipegen.

These tests require external services:
- PostgreSQL for the perceptual hash store
- Redis for batch progress tracking

Run with: pytest tests/integration/ -v -m integration
Skip with: pytest -m "not integration"
"""
