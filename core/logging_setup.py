from __future__ import annotations

import logging
import sys

from .config import get_settings


class KVFormatter(logging.Formatter):
    """Formatter that appends common extra fields if present.

    Keeps classic human-readable format while surfacing structured context.
    """

    keys = (
        "event",
        "action",
        "actor_id",
        "role",
        "order_id",
        "application_id",
        "category_id",
        "parent_id",
        "executor_id",
        "customer_id",
        "from_status",
        "to_status",
        "status",
        "slug",
        "rejected_count",
        "count",
        "total",
        "radius_km",
        "reason",
        "took_ms",
    )

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        parts: list[str] = []
        for k in self.keys:
            if hasattr(record, k):
                v = getattr(record, k)
                if v is None:
                    continue
                if k in {"reason", "slug"}:
                    parts.append(f"{k}={v!r}")
                else:
                    parts.append(f"{k}={v}")
        if parts:
            return f"{base} | {' '.join(parts)}"
        return base


def configure_logging(level: str | int | None = None) -> logging.Logger:
    """Configure root logger with KVFormatter. Safe to call multiple times."""
    if level is None:
        level = get_settings().log_level

    root = logging.getLogger()
    root.setLevel(level)

    # Drop existing handlers to avoid duplicates on reloads
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(KVFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)

    # Tweak noisy loggers
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)

    return root
