"""Control plane: dirty propagation, the regeneration engine and the dependency wait gate."""

from __future__ import annotations

from snippet_forge.control_plane.propagation import DirtyPropagator, collect_dirty_dependents
from snippet_forge.control_plane.regeneration import PassReport, RegenerationEngine
from snippet_forge.control_plane.wait_gate import DependencyWaitGate

__all__ = [
    "DependencyWaitGate",
    "DirtyPropagator",
    "PassReport",
    "RegenerationEngine",
    "collect_dirty_dependents",
]
