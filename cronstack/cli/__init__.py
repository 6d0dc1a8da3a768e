"""CLI command modules for Cronstack.

This package contains the command implementations (``start``, ``jobs``)
and the supporting utilities for error handling and progress display.
"""
