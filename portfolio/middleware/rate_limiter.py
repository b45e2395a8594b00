"""
Per-blueprint rate limits.

The Limiter in portfolio/__init__.py has no default limits; limits are
attached here once the blueprints are registered:

    derivation   BULK_DERIVE_RATE_LIMIT   whole-portfolio recompute
    others       API_RATE_LIMIT           CRUD, governance, config, aggregates
    health       exempt
"""

import logging

logger = logging.getLogger(__name__)

_BULK_BLUEPRINTS = ("derivation",)
_API_BLUEPRINTS = ("use_cases", "governance", "metadata", "clients", "portfolio")


def init_rate_limits(app, limiter):
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        logger.debug("Rate limits not applied")
        return

    limits = {
        **dict.fromkeys(_BULK_BLUEPRINTS, app.config["BULK_DERIVE_RATE_LIMIT"]),
        **dict.fromkeys(_API_BLUEPRINTS, app.config["API_RATE_LIMIT"]),
    }
    for name, limit in limits.items():
        blueprint = app.blueprints.get(name)
        if blueprint is not None:
            limiter.limit(limit)(blueprint)

    if "health" in app.blueprints:
        limiter.exempt(app.blueprints["health"])

    logger.info("Rate limits applied: bulk=%s api=%s",
                app.config["BULK_DERIVE_RATE_LIMIT"], app.config["API_RATE_LIMIT"])
