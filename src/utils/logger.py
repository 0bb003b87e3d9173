import sys
from typing import Literal
from loguru import logger

BASE_LOGGER_NAMESPACE = "tool_router"

_configured = False


def get_logger(name: str) -> "logger":
    """Loguru logger carrying ``module`` in its extras, under ``tool_router``.

    Names already starting with the namespace are used as given.
    """
    if name != BASE_LOGGER_NAMESPACE and not name.startswith(f"{BASE_LOGGER_NAMESPACE}."):
        name = f"{BASE_LOGGER_NAMESPACE}.{name}"
    return logger.bind(module=name)


def _not_audit(record) -> bool:
    return not record["extra"].get("audit")


def configure_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO",
) -> None:
    """
    Replace loguru's default sink with the router's stderr sinks.

    Only the first call has any effect; ``ToolRouter`` and ``main.py`` both
    call it. Audit records are left to the audit file sink.
    """
    global _configured
    if _configured:
        return

    logger.remove()
    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | <cyan>{extra[module]}</cyan> | {message}",
        level=level,
        colorize=True,
        filter=lambda record: "module" in record["extra"] and _not_audit(record),
    )
    # unbound records (third-party code logging through loguru)
    logger.add(
        sys.stderr,
        format="<level>{level: <8}</level> | {message}",
        level=level,
        colorize=True,
        filter=lambda record: "module" not in record["extra"] and _not_audit(record),
    )

    _configured = True
