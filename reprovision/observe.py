"""Observed-state snapshots of the live machine."""

from __future__ import annotations

import logging

from reprovision.drivers.base import InstallCapability
from reprovision.errors import InstallCapabilityError
from reprovision.fsutil import file_fingerprint
from reprovision.models import utc_now_iso
from reprovision.models.manifest import DesiredStateGraph
from reprovision.models.state import Snapshot
from reprovision.state import StateStore

logger = logging.getLogger(__name__)


def observe(
    graph: DesiredStateGraph,
    driver: InstallCapability,
    store: StateStore | None = None,
) -> Snapshot:
    """Query installed packages and fingerprint every restore target in ``graph``.

    When the driver cannot be queried and a store holds an earlier snapshot,
    that snapshot's package set stands in and the snapshot carries a warning.
    """
    warnings: list[str] = []
    try:
        packages = driver.query()
    except InstallCapabilityError as e:
        stored = store.load().last_snapshot if store is not None else None
        if stored is None:
            raise
        warnings.append(f"Package query failed ({e.message}); using last recorded package set")
        logger.warning("Package query failed, falling back to stored snapshot: %s", e.message)
        packages = set(stored.packages)

    files = {str(intent.target): file_fingerprint(intent.target) for intent in graph.restores}
    return Snapshot(packages=packages, files=files, taken_at_utc=utc_now_iso(), warnings=warnings)

