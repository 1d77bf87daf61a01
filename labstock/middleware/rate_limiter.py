"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in labstock/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from labstock.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Digest trigger:   10/minute  (one legitimate call per day)
        - Export requests:  30/minute  (each one spawns worker work)
        - Read endpoints:   200/minute
        - Health check:     exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("alerts_cron")
    if bp:
        limiter.limit("10/minute")(bp)

    bp = app.blueprints.get("export")
    if bp:
        limiter.limit("30/minute")(bp)

    for bp_name in ("alerts", "scheduler"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("200/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: cron 10/min, export 30/min, read 200/min")
