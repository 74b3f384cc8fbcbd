"""Core data models: catalog, manifest / desired-state graph, plan, run records."""

from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
