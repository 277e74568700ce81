"""Logging setup with a custom TRACE level below DEBUG."""

import logging

TRACE = 5

logging.TRACE = TRACE
logging.addLevelName(TRACE, "TRACE")


# Add trace method to standard Logger class for all instances
def trace_method(self, msg, *args, **kwargs):
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


logging.Logger.trace = trace_method


def configure_logging(level_name: str) -> None:
    """Configure the root logger and the noisy third-party loggers."""
    level_str = level_name.upper()
    if level_str == "TRACE":
        log_level = TRACE
    elif level_str == "VERBOSE":
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, level_str, logging.INFO)

    root = logging.getLogger()
    if root.hasHandlers():
        return

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)-8s - %(message)s'
    )

    if level_str == "VERBOSE":
        http_level = logging.DEBUG
        connectors_level = TRACE
        sync_level = logging.DEBUG
        root.info("VERBOSE mode enabled: HTTP details and connector traces active for debugging.")
    elif level_str == "TRACE":
        http_level = TRACE
        connectors_level = TRACE
        sync_level = TRACE
    else:
        http_level = logging.WARNING
        connectors_level = logging.DEBUG if log_level <= logging.DEBUG else log_level
        sync_level = log_level

    root.setLevel(log_level)
    logging.getLogger("httpcore").setLevel(http_level)
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("app.connectors").setLevel(connectors_level)
    logging.getLogger("app.services.sync_service").setLevel(sync_level)

    if level_str == "TRACE":
        root.trace("Trace logging enabled at startup (verbose details).")
    else:
        root.debug("Debug logging enabled at startup.")
