# tests/fixtures/__init__.py
"""Test doubles and engine scripts shared across test modules."""
