from .stages import Stage, StageCatalog
from .types import (
    ACTION_TYPES,
    Action,
    ExecutionContext,
    ExecutionMetrics,
    ExecutionResult,
    RecordWon,
    SetRecordStage,
    action_from_dict,
    actions_from_json,
    actions_to_json,
)

__all__ = [
    "Action",
    "ACTION_TYPES",
    "SetRecordStage",
    "RecordWon",
    "ExecutionContext",
    "ExecutionMetrics",
    "ExecutionResult",
    "Stage",
    "StageCatalog",
    "action_from_dict",
    "actions_from_json",
    "actions_to_json",
]
