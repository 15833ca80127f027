from __future__ import annotations

import logging

PACKAGE_LOGGER = "flashloan_arb"

_LOGGING_CONFIGURED = False


def _dedupe_logger_handlers(l: logging.Logger) -> None:
    """
    Remove duplicated handlers (common cause of double logs).
    Dedupe key: (handler type, stream id if StreamHandler else handler id)
    """
    seen: set[tuple] = set()
    new_handlers: list[logging.Handler] = []
    for h in list(l.handlers):
        stream = getattr(h, "stream", None)
        key = (type(h), id(stream) if stream is not None else id(h))
        if key in seen:
            continue
        seen.add(key)
        new_handlers.append(h)
    l.handlers = new_handlers


def configure_logging(level: int = logging.INFO, force: bool = False) -> None:
    """
    Configure logging so that:
      - only the 'flashloan_arb' package logger owns a StreamHandler
      - all child loggers propagate to it (no per-module handlers)
      - duplicated handlers on root/package are removed
    Calling it again is a no-op unless force=True.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED and not force:
        return

    root = logging.getLogger()
    _dedupe_logger_handlers(root)

    pkg = logging.getLogger(PACKAGE_LOGGER)
    _dedupe_logger_handlers(pkg)

    if not pkg.handlers:
        h = logging.StreamHandler()
        h.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        pkg.addHandler(h)

    pkg.setLevel(level)
    pkg.propagate = False

    for name, obj in logging.root.manager.loggerDict.items():
        if not isinstance(obj, logging.Logger):
            continue
        if name.startswith(PACKAGE_LOGGER + "."):
            obj.handlers = []
            obj.propagate = True
            obj.setLevel(level)

    _LOGGING_CONFIGURED = True
