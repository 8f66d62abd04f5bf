"""Logging setup."""

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

# Raw webhook payloads go here, not to the main log.
request_log = logging.getLogger("tang.requests")
request_log.propagate = False


def setup_logging(logs_dir: Path, level: int = logging.INFO) -> None:
    """Configure process-wide logging and the payload log at logs/json.log."""
    logging.basicConfig(level=level, format=LOG_FORMAT)

    logs_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(logs_dir / "json.log")
    handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
    request_log.addHandler(handler)
    request_log.setLevel(logging.INFO)
