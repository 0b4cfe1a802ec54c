import json
import logging
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

_total_events = 0


def token_prefix(token: str | None) -> str | None:
    if not token:
        return None
    return token[:8]


def log_event(
    path: str | None,
    event: str,
    result: str,
    latency_ms: float,
    extra: dict | None = None,
):
    global _total_events
    _total_events += 1

    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
        "result": result,
        "latency_ms": round(latency_ms, 3),
        "event_id": _total_events,
    }
    if extra:
        record.update(extra)

    logger.info("%s %s %.1fms", event, result, latency_ms)
    if not path:
        return
    try:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        with p.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")
    except OSError:
        logger.exception("could not write event log %s", path)
