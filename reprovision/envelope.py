"""The machine-readable result every command emits.

Shape: ``{schemaVersion, toolVersion, command, runId, timestampUtc, success,
data, error}``. Changing that shape incompatibly means bumping both
``SCHEMA_VERSION`` and the tool's major version.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from reprovision import SCHEMA_VERSION, __version__
from reprovision.errors import ReprovisionError
from reprovision.models import utc_now_iso

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 2  # Partial run or failing verification


@dataclass
class Envelope:
    command: str
    success: bool
    data: dict[str, Any] | None = None
    error: dict[str, Any] | None = None
    run_id: str = ""
    timestamp_utc: str = field(default_factory=utc_now_iso)
    exit_code: int = EXIT_SUCCESS  # Process exit status; not part of the document

    @classmethod
    def failure(cls, command: str, error: ReprovisionError, data: dict | None = None) -> Envelope:
        return cls(
            command=command,
            success=False,
            data=data,
            error=error.to_dict(),
            exit_code=EXIT_FAILURE,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": SCHEMA_VERSION,
            "toolVersion": __version__,
            "command": self.command,
            "runId": self.run_id or None,
            "timestampUtc": self.timestamp_utc,
            "success": self.success,
            "data": self.data,
            "error": self.error,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)
