"""Minimal saga orchestrator: ordered steps with compensations.

Steps run in order. When a step raises, the compensations registered by the
steps that already completed run in reverse order, then the original error
is re-raised. A compensation that itself fails is logged and the remaining
compensations still run.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from app.core.logging import get_logger

logger = get_logger(__name__)

Compensation = Callable[[], Awaitable[None]]


@dataclass
class SagaStep:
    name: str
    action: Callable[["SagaContext"], Awaitable[Any]]


@dataclass
class SagaContext:
    """Shared state passed between steps."""

    values: dict[str, Any] = field(default_factory=dict)
    compensations: list[tuple[str, Compensation]] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)

    def on_rollback(self, name: str, compensation: Compensation) -> None:
        """Register an undo action for work the current step did."""
        self.compensations.append((name, compensation))


class SagaOrchestrator:
    def __init__(self, name: str, steps: list[SagaStep]) -> None:
        self.name = name
        self.steps = steps

    async def run(self, context: SagaContext | None = None) -> SagaContext:
        context = context or SagaContext()
        for step in self.steps:
            try:
                result = await step.action(context)
            except Exception:
                logger.warning("Saga %s failed at step %s, compensating", self.name, step.name)
                await self._compensate(context)
                raise
            context.values[step.name] = result
            context.completed.append(step.name)
        return context

    async def _compensate(self, context: SagaContext) -> None:
        for name, compensation in reversed(context.compensations):
            try:
                await compensation()
            except Exception:
                logger.exception("Saga %s compensation %s failed", self.name, name)
