from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from .types import ExecutionContext, ExecutionResult


class ActionExecutor(ABC):
    action_type: ClassVar[type]
    name: ClassVar[str]

    @abstractmethod
    async def execute(self, action: Any, ctx: ExecutionContext) -> ExecutionResult:
        raise NotImplementedError
