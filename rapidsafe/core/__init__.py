"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging
    errors          — classified exception hierarchy & handlers
    middleware      — request correlation & timing
    database        — async SQLAlchemy engine and sessions
    security        — bearer-token caller identity
    health          — health check aggregation
"""
