"""
Lab Reagent Stock Management
Blueprint registry.
"""

from flask import request


def parse_limit(default_limit=50, max_limit=500):
    """Read the ``limit`` query param, falling back to the default and
    capping at ``max_limit``."""
    try:
        limit = int(request.args.get("limit", default_limit))
    except (ValueError, TypeError):
        limit = default_limit
    return max(1, min(limit, max_limit))
