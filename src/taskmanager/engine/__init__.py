"""Assignment engine: store, dependency graph, lifecycle and workload views."""

from taskmanager.engine.graph import DependencyGraph, UnblockEvent
from taskmanager.engine.lifecycle import LifecycleStateMachine, TransitionResult
from taskmanager.engine.store import EntityStore
from taskmanager.engine.workload import Workload, WorkloadTracker

__all__ = [
    "DependencyGraph",
    "EntityStore",
    "LifecycleStateMachine",
    "TransitionResult",
    "UnblockEvent",
    "Workload",
    "WorkloadTracker",
]
