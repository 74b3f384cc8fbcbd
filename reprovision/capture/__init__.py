"""Capture pipeline: live machine to bundle artifact, and profile discovery."""

from reprovision.capture.artifact import ArtifactMetadata, extract_artifact, read_artifact, write_artifact
from reprovision.capture.discovery import Profile, ProfileKind, discover
from reprovision.capture.engine import CaptureResult, ModuleCaptureResult, ModuleCaptureStatus, capture

__all__ = [
    "ArtifactMetadata",
    "CaptureResult",
    "ModuleCaptureResult",
    "ModuleCaptureStatus",
    "Profile",
    "ProfileKind",
    "capture",
    "discover",
    "extract_artifact",
    "read_artifact",
    "write_artifact",
]
