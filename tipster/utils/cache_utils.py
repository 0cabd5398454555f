"""
Cache utilities for Tipster
Standings tables are cached per season; each season carries a version number
in the cache so one season can be invalidated without touching the others.
"""

import functools

from flask import current_app

from tipster import cache

VERSION_KEY = "standings_version_{season_id}"


def _season_version(season_id):
    return cache.get(VERSION_KEY.format(season_id=season_id)) or 0


def cached_standings(table, timeout=60, config_key="STANDINGS_CACHE_TIMEOUT"):
    """
    Decorator for caching a season's standings table

    The wrapped function must take the season id as its first argument.

    Args:
        table: Table name used in the cache key ("league" or "cup")
        timeout: Cache timeout in seconds
        config_key: Config entry that overrides the timeout
    """

    def decorator(f):
        @functools.wraps(f)
        def wrapped(season_id, *args, **kwargs):
            version = _season_version(season_id)
            cache_key = f"standings_{table}_{season_id}_v{version}"

            result = cache.get(cache_key)
            if result is not None:
                current_app.logger.debug(f"Standings cache hit: {cache_key}")
                return result

            result = f(season_id, *args, **kwargs)
            cache.set(
                cache_key, result, timeout=current_app.config.get(config_key, timeout)
            )
            return result

        return wrapped

    return decorator


def invalidate_season_standings(season_id):
    """Drop every cached table of a season by bumping its version"""
    key = VERSION_KEY.format(season_id=season_id)
    version = _season_version(season_id) + 1
    # No timeout: the version has to outlive every table cached under it
    cache.set(key, version, timeout=0)
    current_app.logger.debug(f"Standings cache for season {season_id} now at v{version}")
    return version


def get_cache_stats():
    """Get cache configuration for the operations endpoint"""
    return {
        "type": current_app.config.get("CACHE_TYPE", "Unknown"),
        "timeout": current_app.config.get("CACHE_DEFAULT_TIMEOUT", 300),
        "standings_timeout": current_app.config.get("STANDINGS_CACHE_TIMEOUT", 60),
    }
