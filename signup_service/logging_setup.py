import logging
import os
from typing import Dict, Optional


class KeyValueFormatter(logging.Formatter):
    """Single-line ``key=value`` records, prefixed with the service fields."""

    def __init__(self, static_fields: Optional[Dict[str, str]] = None, datefmt: str | None = None) -> None:
        super().__init__(datefmt=datefmt)
        self.static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, self.datefmt)
        kv = [f"time={ts}"]
        kv += [f"{k}={v}" for k, v in self.static_fields.items()]
        kv += [
            f"level={record.levelname}",
            f"logger={record.name}",
            f"message={record.getMessage()}",
        ]
        if record.exc_info:
            # Trace sur une seule ligne pour rester grep-able
            trace = self.formatException(record.exc_info).replace("\n", " | ")
            kv.append(f"exc_info={trace}")
        return " ".join(kv)


def configure_logging(level: str | None = None, service: str = "signup-service", version: str | None = None) -> None:
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=level, format="%(message)s")
    root = logging.getLogger()
    root.setLevel(level)

    fields = {"service": service}
    if version:
        fields["version"] = version
    for h in root.handlers:
        h.setFormatter(KeyValueFormatter(static_fields=fields))
