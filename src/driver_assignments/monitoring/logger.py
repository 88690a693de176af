import json
import logging
import sys
import traceback
from typing import Optional

import httpx
import loguru
from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<bold><white>{message}</white></bold> | <dim>{extra_json}</dim> {stacktrace}"
)


# Runs at import time from driver_assignments/__init__.py with defaults
def configure_logger(
    level: str = "INFO",
    log_file: Optional[str] = None,
    serialize: bool = False,
    file_rotation: str = "10 MB",
    file_retention: str = "7 days",
):
    """
    Configure loguru logger with a console sink and an optional file sink.

    Args:
        level: Minimum level for all sinks
        log_file: Path of a rotating log file (disabled when None)
        serialize: Write the file sink as JSON lines instead of plain text
        file_rotation: loguru rotation policy for the file sink
        file_retention: loguru retention policy for the file sink
    """
    # httpx and aiohttp log every request at INFO through the stdlib
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)

    logger.remove()  # remove the default logger

    logger.add(
        sink=sys.stdout,
        level=level,
        diagnose=False,
        format=CONSOLE_FORMAT,
        filter=process_log_record,
    )

    if log_file:
        try:
            logger.add(
                sink=log_file,
                level=level,
                rotation=file_rotation,
                retention=file_retention,
                serialize=serialize,
                enqueue=False,
                diagnose=False,
            )
            logger.info("File logging enabled", log_file=log_file, serialize=serialize)
        except OSError as e:
            logger.warning(f"Failed to initialize file logging: {e}", log_file=log_file)


def process_log_record(record: "loguru.Record") -> "loguru.Record":
    r"""
    Inject transformed metadata into each log record before they are passed to the formatter.

    1. Render the "extra" field as single-line JSON under "extra_json"; "extra" itself is left
       intact because every sink shares the record.
    2. For error logs, add a traceback with \r instead of \n so that log shippers do not
       split the traceback into multiple log events.
    """
    record["extra_json"] = json.dumps(record["extra"], default=str)

    record["stacktrace"] = ""
    if record["exception"]:
        err = record["exception"]
        stacktrace = get_formatted_stacktrace(err, replace_newline_character_with_carriage_return=True)
        record["stacktrace"] = stacktrace

    return record


def get_formatted_stacktrace(loguru_record_exception, replace_newline_character_with_carriage_return: bool) -> str:
    """Get the formatted stacktrace for the current exception."""
    exc_type, exc_value, exc_traceback = loguru_record_exception
    stacktrace_: list[str] = traceback.format_exception(exc_type, exc_value, exc_traceback)
    stacktrace: str = "".join(stacktrace_)
    if replace_newline_character_with_carriage_return:
        stacktrace = stacktrace.replace("\n", "\r")
    return stacktrace


def log_http_exchange(response: httpx.Response):
    """Log a completed backend call (never the bearer header)."""
    request = response.request
    exchange_info = {
        "method": request.method,
        "path": request.url.path,
        "status_code": response.status_code,
        "elapsed_ms": int(response.elapsed.total_seconds() * 1000) if _has_elapsed(response) else None,
    }
    logger.debug("Backend call completed", http_exchange=exchange_info)


def _has_elapsed(response: httpx.Response) -> bool:
    # elapsed is only set once the response body has been read or closed
    try:
        response.elapsed
    except RuntimeError:
        return False
    return True
