import json
from typing import Any


def log_event(component: str, **fields: Any) -> None:
    """Print one JSON line per event; stdout is collected by the host (Cloud Run, Docker)."""
    payload = {"component": component, **fields}
    try:
        print(json.dumps(payload, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        print(payload)
