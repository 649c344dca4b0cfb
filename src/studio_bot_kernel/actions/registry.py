from __future__ import annotations

from .base import ActionExecutor
from .types import ACTION_TYPES, Action


class ExecutorRegistry:
    """Executors keyed by Action variant class."""

    def __init__(self, executors: list[ActionExecutor] | None = None) -> None:
        self._executors: dict[type, ActionExecutor] = {}
        for executor in executors or []:
            self.register(executor)

    def register(self, executor: ActionExecutor) -> None:
        action_type = executor.action_type
        if action_type not in ACTION_TYPES:
            raise ValueError(f"{type(executor).__name__} targets unknown action type {action_type!r}")
        if action_type in self._executors:
            raise ValueError(f"executor already registered for {action_type.kind}")
        self._executors[action_type] = executor

    def get(self, action: Action) -> ActionExecutor:
        executor = self._executors.get(type(action))
        if executor is None:
            raise KeyError(f"no executor registered for {type(action).__name__}")
        return executor

    def missing(self) -> list[str]:
        return [cls.kind for cls in ACTION_TYPES if cls not in self._executors]

    def ensure_exhaustive(self) -> None:
        missing = self.missing()
        if missing:
            raise RuntimeError(f"no executor registered for action types: {', '.join(missing)}")


def default_registry() -> ExecutorRegistry:
    from .implementations import RecordWonExecutor, SetRecordStageExecutor

    registry = ExecutorRegistry([SetRecordStageExecutor(), RecordWonExecutor()])
    registry.ensure_exhaustive()
    return registry
