"""JSON Schemas for every document the engine reads.

These are the normative structural definitions: a document that fails them is
rejected before any resolution or execution happens. Tools can export them
with ``reprovision schema <name>`` and use any JSON Schema validator.
"""

from reprovision import SCHEMA_VERSION

_SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"

MERGE_STRATEGIES = ["copy", "merge-json", "merge-ini", "append"]
SENSITIVITY_LEVELS = ["none", "low", "medium", "high"]
VERIFY_TYPES = ["file-exists", "package-present", "command"]

_STRING_LIST = {"type": "array", "items": {"type": "string", "minLength": 1}}

RESTORE_OP_SCHEMA: dict = {
    "type": "object",
    "required": ["type", "source", "target"],
    "properties": {
        "type": {"type": "string", "enum": MERGE_STRATEGIES},
        "source": {"type": "string", "minLength": 1},
        "target": {"type": "string", "minLength": 1},
        "optional": {"type": "boolean", "default": False},
        "module": {
            "type": "string",
            "description": "Module id recorded as provenance for inline operations.",
        },
    },
}

VERIFY_OP_SCHEMA: dict = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "enum": VERIFY_TYPES},
        "path": {"type": "string", "minLength": 1},
        "sha256": {"type": "string", "pattern": "^[0-9a-f]{64}$"},
        "id": {"type": "string", "minLength": 1},
        "command": {"type": "string", "minLength": 1},
        "expectedExitCode": {"type": "integer"},
        "timeoutSeconds": {"type": "integer", "minimum": 1},
        "description": {"type": "string"},
    },
}

PACKAGE_REF_SCHEMA: dict = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {
            "type": "object",
            "required": ["id"],
            "properties": {
                "id": {"type": "string", "minLength": 1},
                "ensure": {"type": "string", "enum": ["present", "absent"]},
                "displayName": {"type": "string"},
                "source": {"type": "string"},
                "version": {"type": "string"},
            },
        },
    ]
}

MANIFEST_SCHEMA: dict = {
    "$schema": _SCHEMA_DIALECT,
    "title": "Desired-state manifest",
    "type": "object",
    "required": ["version"],
    "properties": {
        "version": {"type": "integer", "minimum": 1},
        "name": {"type": "string"},
        "includes": _STRING_LIST,
        "packages": {"type": "array", "items": PACKAGE_REF_SCHEMA},
        "bundles": _STRING_LIST,
        "modules": _STRING_LIST,
        "restore": {"type": "array", "items": RESTORE_OP_SCHEMA},
    },
}

MODULE_SCHEMA: dict = {
    "$schema": _SCHEMA_DIALECT,
    "title": "Catalog module definition",
    "type": "object",
    "required": ["id"],
    "properties": {
        "id": {"type": "string", "pattern": r"^[a-z0-9][a-z0-9._-]*$"},
        "displayName": {"type": "string"},
        "version": {"type": "string"},
        "sensitivity": {"type": "string", "enum": SENSITIVITY_LEVELS},
        "matches": {
            "type": "object",
            "properties": {"ids": _STRING_LIST, "patterns": _STRING_LIST},
        },
        "capture": {
            "type": "object",
            "properties": {
                "files": _STRING_LIST,
                "excludeGlobs": _STRING_LIST,
                "sensitiveFiles": _STRING_LIST,
            },
        },
        "restore": {"type": "array", "items": RESTORE_OP_SCHEMA},
        "verify": {"type": "array", "items": VERIFY_OP_SCHEMA},
    },
}

BUNDLE_SCHEMA: dict = {
    "$schema": _SCHEMA_DIALECT,
    "title": "Catalog bundle (module grouping)",
    "type": "object",
    "required": ["id", "modules"],
    "properties": {
        "id": {"type": "string", "pattern": r"^[a-z0-9][a-z0-9._-]*$"},
        "displayName": {"type": "string"},
        "bundles": _STRING_LIST,
        "modules": _STRING_LIST,
    },
}

CONFIG_SCHEMA: dict = {
    "$schema": _SCHEMA_DIALECT,
    "title": "Engine configuration",
    "type": "object",
    "properties": {
        "stateDir": {"type": "string"},
        "catalogDir": {"type": "string"},
        "profilesDir": {"type": "string"},
        "machineId": {"type": "string"},
        "logFile": {"type": "string"},
        "sensitivePatterns": _STRING_LIST,
        "variables": {"type": "object"},
        "driver": {
            "type": "object",
            "properties": {
                "kind": {"type": "string", "enum": ["command", "memory"]},
                "preset": {"type": "string", "enum": ["apt", "dnf", "brew", "pacman"]},
                "query": {"type": "string"},
                "ensure": {"type": "string"},
                "remove": {"type": "string"},
                "timeoutSeconds": {"type": "integer", "minimum": 1},
                "packages": _STRING_LIST,
            },
        },
    },
}

STATE_SCHEMA: dict = {
    "$schema": _SCHEMA_DIALECT,
    "title": "Last-known state file",
    "type": "object",
    "required": ["schemaVersion"],
    "properties": {
        "schemaVersion": {"type": "integer", "minimum": 1},
        "updatedAtUtc": {"type": "string"},
        "lastRunId": {"type": "string"},
        "lastSnapshot": {
            "type": "object",
            "required": ["packages", "files"],
            "properties": {
                "takenAtUtc": {"type": "string"},
                "packages": _STRING_LIST,
                "files": {"type": "object"},
            },
        },
    },
}

RUN_RECORD_SCHEMA: dict = {
    "$schema": _SCHEMA_DIALECT,
    "title": "Run record",
    "type": "object",
    "required": ["schemaVersion", "runId", "command", "timestampUtc", "outcome", "steps"],
    "properties": {
        "schemaVersion": {"type": "integer", "minimum": 1},
        "runId": {"type": "string", "minLength": 1},
        "command": {"type": "string"},
        "timestampUtc": {"type": "string"},
        "outcome": {"type": "string", "enum": ["success", "partial", "failed"]},
        "steps": {"type": "array", "items": {"type": "object"}},
        "backupDir": {"type": "string"},
        "warnings": _STRING_LIST,
    },
}

METADATA_SCHEMA: dict = {
    "$schema": _SCHEMA_DIALECT,
    "title": "Bundle artifact metadata",
    "type": "object",
    "required": [
        "schemaVersion",
        "capturedAtUtc",
        "sourceMachineId",
        "modulesIncluded",
        "modulesSkipped",
        "warnings",
    ],
    "properties": {
        "schemaVersion": {"type": "integer", "minimum": 1},
        "toolVersion": {"type": "string"},
        "capturedAtUtc": {"type": "string"},
        "sourceMachineId": {"type": "string"},
        "modulesIncluded": {"type": "array", "items": {"type": "string"}},
        "modulesSkipped": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "reason"],
                "properties": {"id": {"type": "string"}, "reason": {"type": "string"}},
            },
        },
        "warnings": {"type": "array", "items": {"type": "string"}},
        "files": {"type": "object"},
        "packageCount": {"type": "integer", "minimum": 0},
    },
}

_SCHEMAS = {
    "manifest": MANIFEST_SCHEMA,
    "module": MODULE_SCHEMA,
    "bundle": BUNDLE_SCHEMA,
    "config": CONFIG_SCHEMA,
    "state": STATE_SCHEMA,
    "run-record": RUN_RECORD_SCHEMA,
    "metadata": METADATA_SCHEMA,
}


def schema_names() -> list[str]:
    return sorted(_SCHEMAS)


def get_schema(name: str) -> dict:
    """Return a copy of a named document schema, tagged with its ``$id``."""
    import copy

    schema = copy.deepcopy(_SCHEMAS[name])
    schema["$id"] = f"https://reprovision.dev/schema/{name}/v{SCHEMA_VERSION}"
    return schema
