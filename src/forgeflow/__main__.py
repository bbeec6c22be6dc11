# src/forgeflow/__main__.py
"""``python -m forgeflow`` entry point."""

from forgeflow.cli import app

if __name__ == "__main__":
    app()
