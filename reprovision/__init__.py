"""reprovision — reconcile a machine against a declarative description.

The engine resolves manifests into a desired-state graph, diffs it against
the live machine, applies the resulting plan with backups, and can capture a
machine into a portable bundle artifact that replays elsewhere.
"""

__version__ = "0.4.0"

# Version of every persisted document this build writes (state file, run
# records, artifact metadata, result envelope).
SCHEMA_VERSION = 1
