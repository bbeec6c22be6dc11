# tests/fixtures/engines/__init__.py
"""Real MCP engine scripts spawned by integration tests."""
