"""
RPFAAS Review — process entrypoint.

Configures logging, makes sure the record store schema exists, then serves
the review API with uvicorn.

Usage:
    python -m rpfaas_review.server
"""

from __future__ import annotations

import logging

import structlog
import uvicorn

from rpfaas_review.config import settings


def configure_logging() -> None:
    """Configure structured logging."""
    level = logging.getLevelName(settings.log_level)
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.log_format != "json"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Library modules log through stdlib logging; render those through
    # structlog as well.
    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=[
                structlog.stdlib.add_logger_name,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
            ],
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


def main() -> None:
    """Initialize the store and serve the API."""
    configure_logging()
    log = structlog.get_logger()

    log.info(
        "rpfaas_review.server.starting",
        api_host=settings.api_host,
        api_port=settings.api_port,
        supabase_url=settings.supabase_url,
    )

    log.info("rpfaas_review.server.init_store")
    from rpfaas_review.store.service import RecordStore

    store = RecordStore(settings.database_url_sync)
    store.initialize()
    log.info("rpfaas_review.server.store_ready")

    from rpfaas_review.api.app import app, state
    from rpfaas_review.integrations.identity import SupabaseIdentityProvider

    state.configure(
        store,
        SupabaseIdentityProvider(
            base_url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            timeout=settings.identity_timeout_seconds,
        ),
    )

    log.info("rpfaas_review.server.serving")
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_config=None)


if __name__ == "__main__":
    main()
