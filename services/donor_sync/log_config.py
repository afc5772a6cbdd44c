"""
structlog setup for the donor sync.

Every entry is rendered as JSON (or readable console lines with
log_format="text") and carries the service name and environment. Modules
obtain their logger with structlog.get_logger(__name__); nothing here runs
on import, so tests keep structlog's defaults.
"""

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from structlog.typing import EventDict, FilteringBoundLogger


def _service_fields(service_name: str, environment: str):
    def add_service_fields(_, __, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_service_fields


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "donor-sync",
    environment: str = "development",
) -> None:
    """
    Route structlog through stdlib logging on stdout.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "json" or "text"
        service_name: Stamped on every entry
        environment: Stamped on every entry
    """
    level = logging.getLevelName(log_level.upper())

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    renderer = (
        structlog.processors.JSONRenderer()
        if log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            _service_fields(service_name, environment),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def log_api_call(
    logger: FilteringBoundLogger,
    method: str,
    url: str,
    status_code: Optional[int] = None,
    duration_ms: Optional[float] = None,
    **extra_context: Any,
) -> None:
    """
    Record one Mollie request.

    5xx answers are logged as errors and 4xx as warnings. Successful calls
    only show up at DEBUG, since a run makes one call per donor and stage.
    """
    context: Dict[str, Any] = {"method": method, "url": url, **extra_context}
    if status_code is not None:
        context["status_code"] = status_code
    if duration_ms is not None:
        context["duration_ms"] = round(duration_ms, 2)

    if status_code is not None and status_code >= 500:
        logger.error("Mollie server error", **context)
    elif status_code is not None and status_code >= 400:
        logger.warning("Mollie rejected request", **context)
    else:
        logger.debug("Mollie call completed", **context)


def log_processing_batch(
    logger: FilteringBoundLogger,
    batch_id: str,
    items_processed: int,
    items_failed: int = 0,
    duration_ms: Optional[float] = None,
    **extra_context: Any,
) -> None:
    """Summarise a batch of create calls, e.g. batch_id="create_mandates"."""
    total = items_processed + items_failed
    context: Dict[str, Any] = {
        "batch_id": batch_id,
        "items_processed": items_processed,
        "items_failed": items_failed,
        "success_rate": round(items_processed / total * 100, 2) if total else 0,
        **extra_context,
    }
    if duration_ms is not None:
        context["duration_ms"] = round(duration_ms, 2)

    if items_failed:
        logger.warning("Batch finished with failures", **context)
    else:
        logger.info("Batch finished", **context)
