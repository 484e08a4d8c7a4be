"""structlog setup shared by the API process, Celery workers and scripts.

``configure_logging()`` is called once when ``api/main.py`` is imported and
again from ``create_app()`` with the configured level.  After that, modules
log through structlog::

    import structlog
    logger = structlog.get_logger(__name__)
    logger.info("offer_created", offer_id=str(offer.id), amount=offer.amount)

Plain ``logging.getLogger(__name__)`` loggers (uvicorn, SQLAlchemy, Celery)
are rendered by the same formatter so every line on stdout has one shape.

The request-logging middleware stores the current request id in
:data:`request_id_var`; :func:`_add_request_id` copies it onto each event.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
"""Id of the HTTP request being served, or ``None`` outside a request.

The error handlers echo it back as ``requestId`` in error envelopes.
"""

# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------

_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "password",
    "new_password",
    "current_password",
    "secret",
    "token",
    "refresh_token",
    "access_token",
    "authorization",
    "api_key",
    "stripe-signature",
    "card",
    "client_secret",
})
"""Lower-cased key fragments whose values never reach a log sink."""

_MASK = "[REDACTED]"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_KEYS)


def _mask_sensitive_values(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Mask values stored under sensitive keys.

    Top-level keys are checked, as are the keys of any dict value one level
    down (typically ``headers=`` or ``metadata=`` payloads).
    """
    for key, value in list(event_dict.items()):
        if _is_sensitive(key):
            event_dict[key] = _MASK
        elif isinstance(value, dict):
            event_dict[key] = {
                k: (_MASK if isinstance(k, str) and _is_sensitive(k) else v)
                for k, v in value.items()
            }
    return event_dict


def _add_request_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Attach ``request_id`` from :data:`request_id_var` when not already bound."""
    request_id = request_id_var.get()
    if request_id is not None:
        event_dict.setdefault("request_id", request_id)
    return event_dict


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog and stdlib logging through one stdout handler.

    ``DEBUG`` selects the coloured console renderer for local work; any
    other level emits one JSON object per line.  Calling this repeatedly
    replaces the previous configuration, so tests may call it freely.

    Args:
        log_level: Level name such as ``"INFO"`` or ``"debug"``.
    """
    level_name = log_level.upper()
    level = getattr(logging, level_name, logging.INFO)
    console = level_name == "DEBUG"

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_request_id,
        _mask_sensitive_values,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer: Processor
    if console:
        renderer = structlog.dev.ConsoleRenderer(colors=True)
    else:
        renderer = structlog.processors.JSONRenderer()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    quiet_level = logging.INFO if console else logging.WARNING
    for name in ("uvicorn.access", "httpx", "httpcore", "stripe"):
        logging.getLogger(name).setLevel(quiet_level)

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
