"""
forgeflow: build and test orchestration over pluggable engines.

Engines are separate executables speaking the MCP tool-call protocol over
stdio. forgeflow resolves engine references, launches engines, calls their
tools and sequences multi-engine workflows such as test-environment setup
and teardown.
"""

__version__ = "0.1.0"
