"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — pretty / JSON logging
    errors          — exception hierarchy & handlers
    middleware      — request id + access logging
    health          — health check aggregation
    database        — SQLAlchemy engine and session scope
    cache           — Redis geocode cache
    locks           — per-key in-process locks
"""
