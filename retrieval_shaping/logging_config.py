"""
Centralized logging configuration for the retrieval shaping pipeline.

Provides unified logging across all modules using loguru.
Supports both console and file output with structured logging.
"""

from __future__ import annotations

import sys
import json
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from loguru import logger
from retrieval_shaping import config
from retrieval_shaping.errors import format_error_for_logging


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure unified logging for the pipeline.

    This should be called once at application startup.

    Args:
        level: Log level; SHAPING_LOG_LEVEL when omitted
        log_file: Optional file sink; SHAPING_LOG_FILE when omitted
    """
    level = (level or config.LOG_LEVEL).upper()
    log_file = log_file or config.LOG_FILE

    # Remove default handler
    logger.remove()

    # Console handler with colored output
    logger.add(
        sys.stderr,
        format=(
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        level=level,
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name}:{function}:{line} - "
                "{message}"
            ),
            level=level,
            rotation="100 MB",
            retention="7 days",
            compression="zip",
        )

    logger.info(f"Logging configured: level={level}")


def log_structured(event_type: str, data: Dict[str, Any], level: str = "info") -> None:
    """
    Log structured data as JSON.

    Args:
        event_type: Type of event (e.g., 'limits_computed', 'filtering_completed')
        data: Dictionary of data to log
        level: Log level (debug, info, warning, error, critical)
    """
    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
        **data,
    }
    log_func = getattr(logger, level.lower(), logger.info)
    log_func(json.dumps(log_entry, default=str))


def log_limits(
    request_id: Optional[str],
    query: str,
    document_chunks: int,
    web_results: int,
    reasoning: str,
) -> None:
    """Log the limits chosen for a request."""
    log_structured(
        "limits_computed",
        {
            "request_id": request_id,
            "query": query[:100],  # Truncate long queries
            "document_chunks": document_chunks,
            "web_results": web_results,
            "reasoning": reasoning,
        },
    )


def log_filtering(request_id: Optional[str], stats: Dict[str, Any]) -> None:
    """Log filtering statistics; an empty outcome is logged as a warning."""
    level = "warning" if stats.get("filtered_count") == 0 else "info"
    log_structured("filtering_completed", {"request_id": request_id, **stats}, level=level)


def log_rerank(
    request_id: Optional[str],
    strategy: str,
    input_count: int,
    output_count: int,
    latency_ms: float,
) -> None:
    """Log a reranking pass."""
    log_structured(
        "rerank_completed",
        {
            "request_id": request_id,
            "strategy": strategy,
            "input_count": input_count,
            "output_count": output_count,
            "latency_ms": round(latency_ms, 3),
        },
        level="debug",
    )


def log_error(error: Exception, request_id: Optional[str] = None, **kwargs: Any) -> None:
    """Log an error with context."""
    log_structured(
        "error_occurred",
        {
            **format_error_for_logging(error, request_id),
            **kwargs,
        },
        level="error",
    )
