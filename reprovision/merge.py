"""Merge strategies for restore operations.

Each strategy is a pure function of (source bytes, current target bytes or
None) to the bytes the target should hold. The planner runs them as a dry
pass to decide whether a restore is needed; the executor runs them for real.
Every strategy is idempotent: merging a source into its own result gives the
same result, which is what makes a second plan come out empty.
"""

from __future__ import annotations

import configparser
import io
import json
from typing import Any, Callable

from reprovision.errors import MergeError
from reprovision.models.catalog import MergeStrategy


def apply_strategy(strategy: MergeStrategy, source: bytes, current: bytes | None) -> bytes:
    """Return the desired target content for ``strategy``."""
    handler = _STRATEGIES[strategy]
    return handler(source, current)


def _copy(source: bytes, current: bytes | None) -> bytes:
    return source


def _merge_json(source: bytes, current: bytes | None) -> bytes:
    incoming = _load_json(source, "source")
    if current is None or not current.strip():
        merged = incoming
    else:
        existing = _load_json(current, "target")
        merged = deep_merge(existing, incoming)
    return (json.dumps(merged, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


def deep_merge(base: Any, overlay: Any) -> Any:
    """Overlay ``overlay`` onto ``base``: nested objects merge, everything else replaces.

    Keys only present in ``base`` keep their value and position.
    """
    if not isinstance(base, dict) or not isinstance(overlay, dict):
        return overlay
    merged = dict(base)
    for key, value in overlay.items():
        merged[key] = deep_merge(base[key], value) if key in base else value
    return merged


def _load_json(data: bytes, which: str) -> Any:
    try:
        return json.loads(data.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MergeError(f"merge-json: {which} is not valid JSON: {e}") from e


def _merge_ini(source: bytes, current: bytes | None) -> bytes:
    parser = _new_ini_parser()
    try:
        if current:
            parser.read_string(_decode(current, "target"), source="<target>")
        parser.read_string(_decode(source, "source"), source="<source>")
    except configparser.Error as e:
        raise MergeError(f"merge-ini: cannot parse INI content: {e}") from e
    buffer = io.StringIO()
    parser.write(buffer)
    return buffer.getvalue().encode("utf-8")


def _new_ini_parser() -> configparser.ConfigParser:
    parser = configparser.ConfigParser(interpolation=None, strict=False)
    parser.optionxform = str  # keep key case
    return parser


def _append(source: bytes, current: bytes | None) -> bytes:
    addition = _decode(source, "source")
    if current is None:
        return addition.encode("utf-8")
    existing = _decode(current, "target")
    if addition.strip() and addition.strip() in existing:
        return current
    if existing and not existing.endswith("\n"):
        existing += "\n"
    return (existing + addition).encode("utf-8")


def _decode(data: bytes, which: str) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MergeError(f"{which} is not UTF-8 text: {e}") from e


_STRATEGIES: dict[MergeStrategy, Callable[[bytes, bytes | None], bytes]] = {
    MergeStrategy.COPY: _copy,
    MergeStrategy.MERGE_JSON: _merge_json,
    MergeStrategy.MERGE_INI: _merge_ini,
    MergeStrategy.APPEND: _append,
}
