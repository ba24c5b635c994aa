"""
Checkpoints feature — durable PipelineState snapshots that make runs resumable.

Public API:
    from features.checkpoints import JsonCheckpointStore, InMemoryCheckpointStore
"""

from features.checkpoints.store import (
    CheckpointStore,
    InMemoryCheckpointStore,
    JsonCheckpointStore,
    state_from_dict,
    state_to_dict,
)

__all__ = [
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "JsonCheckpointStore",
    "state_from_dict",
    "state_to_dict",
]
