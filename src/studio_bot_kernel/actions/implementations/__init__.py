from .record_stage_set import SetRecordStageExecutor
from .record_won import RecordWonExecutor

__all__ = ["SetRecordStageExecutor", "RecordWonExecutor"]
