"""
structlog configuration shared by the library and the CLI.

The library itself only calls ``structlog.get_logger``; applications that want
the batcher events rendered call :func:`setup_logging` once at startup.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

LOGGER_NAME = "coalescer"


def _renderer(json_logs: bool) -> structlog.typing.Processor:
    if json_logs:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(level: int = logging.WARNING, json_logs: bool = False) -> None:
    """
    Route ``coalescer`` events through stdlib logging.

    Parameters
    ----------
    level : int, optional
        Level of the ``coalescer`` logger. Other loggers are left untouched.
    json_logs : bool, optional
        Render each event as one JSON object instead of a console line.
    """
    logging.basicConfig(format="%(message)s")
    logging.getLogger(LOGGER_NAME).setLevel(level)

    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors.append(structlog.processors.format_exc_info)
    processors.extend([structlog.processors.UnicodeDecoder(), _renderer(json_logs=json_logs)])

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        # setup_logging may run again with another renderer
        cache_logger_on_first_use=False,
    )


@contextmanager
def logging_context(**context) -> Iterator[None]:
    """Bind ``context`` to every event logged inside the block, keeping keys already bound."""
    bound = structlog.contextvars.get_contextvars()
    missing = {key: value for key, value in context.items() if key not in bound}
    if not missing:
        yield
        return
    with structlog.contextvars.bound_contextvars(**missing):
        yield
