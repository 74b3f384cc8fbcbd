"""Error hierarchy for the reconciliation engine.

Every engine error carries a stable machine-readable ``code`` that ends up in
the result envelope. Input errors are fatal and raised before anything is
executed; step-level errors are caught by the executor and recorded on the
step instead of propagating.
"""

from __future__ import annotations

from typing import Any


class ReprovisionError(Exception):
    """Base class for all engine errors."""

    code = "ENGINE_ERROR"

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "detail": self.detail}


# --- Input errors (fatal, nothing executed) ---


class InputError(ReprovisionError):
    code = "INPUT_ERROR"


class ManifestParseError(InputError):
    code = "MANIFEST_PARSE"


class UnknownModuleError(InputError):
    """A manifest or bundle references a module id the catalog does not have."""

    code = "MODULE_NOT_FOUND"


class UnknownBundleError(InputError):
    code = "BUNDLE_NOT_FOUND"


class CircularIncludeError(InputError):
    code = "CIRCULAR_INCLUDE"


class CatalogError(InputError):
    code = "CATALOG_INVALID"


class ConfigError(InputError):
    code = "CONFIG_INVALID"


class ProfileNotFoundError(InputError):
    code = "PROFILE_NOT_FOUND"


class RestoreNotEnabledError(InputError):
    code = "RESTORE_NOT_ENABLED"


class ArtifactError(InputError):
    code = "ARTIFACT_INVALID"


class SchemaVersionMismatchError(ReprovisionError):
    """A persisted document was written by a newer schema than we support."""

    code = "SCHEMA_VERSION_MISMATCH"


# --- Backup / rollback errors (fatal for revert only) ---


class BackupError(ReprovisionError):
    code = "BACKUP_ERROR"


class BackupMissingError(BackupError):
    code = "BACKUP_MISSING"


class BackupCorruptError(BackupError):
    code = "BACKUP_CORRUPT"


# --- Step-level errors (recorded per step by the executor) ---


class MergeError(ReprovisionError):
    code = "MERGE_FAILED"


class InstallCapabilityError(ReprovisionError):
    code = "INSTALL_CAPABILITY"


# --- Environment errors ---


class IOFailureError(ReprovisionError):
    """The filesystem refused a read or write the command needed."""

    code = "IO_ERROR"
