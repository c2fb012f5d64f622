"""
Saga runner for the compound trip operations.

A compound operation is an ordered list of ``SagaStep``s.  Each step
applies one single-entity change and knows how to undo it.  When a step
fails, the steps that already committed are compensated in reverse order.

Compensation policy
-------------------
* A committed step is undone by its ``compensate`` callable, which forces
  the entity back and records that in history (no validation).
* The failing step may itself have mutated its entity before failing
  (history append failed).  Its ``revert`` callable, if given, restores
  the live status only, which brings the entity back in line with its
  existing latest history record.
* The caller receives ``PartialFailure`` whenever anything was mutated.
  ``compensated`` is True only when every undo succeeded; otherwise a
  consistency check / correct is required.  A first step that fails before
  mutating re-raises its original error unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from .errors import PartialFailure

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[object]]
Revert = Callable[[Exception], Awaitable[object]]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensate: Optional[Action] = None
    revert: Optional[Revert] = None
    applied: bool = field(default=False, init=False)


class Saga:
    def __init__(self, operation: str, entity_id: int) -> None:
        self.operation = operation
        self.entity_id = entity_id
        self.steps: list[SagaStep] = []

    def add(
        self,
        name: str,
        action: Action,
        compensate: Optional[Action] = None,
        revert: Optional[Revert] = None,
    ) -> "Saga":
        self.steps.append(SagaStep(name, action, compensate, revert))
        return self

    @property
    def completed_steps(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.steps if s.applied)

    async def run(self) -> None:
        for step in self.steps:
            try:
                await step.action()
            except Exception as exc:
                committed = self.completed_steps
                compensated = await self._unwind(step, exc)
                if not committed and compensated and not isinstance(
                    exc, PartialFailure
                ):
                    # Nothing was mutated; surface the original error
                    raise
                raise PartialFailure(
                    f"{self.operation} of trip {self.entity_id} failed at "
                    f"step '{step.name}' ({exc}); "
                    + ("earlier steps compensated" if compensated
                       else "compensation incomplete, run a consistency check"),
                    operation=self.operation,
                    entity_id=self.entity_id,
                    step=step.name,
                    completed_steps=committed,
                    compensated=compensated,
                ) from exc
            step.applied = True

    async def _unwind(self, failed: SagaStep, exc: Exception) -> bool:
        ok = True
        if failed.revert is not None:
            ok = await self._attempt(
                lambda: failed.revert(exc), failed.name, "revert"
            )
        for step in reversed([s for s in self.steps if s.applied]):
            if step.compensate is None:
                continue
            if await self._attempt(step.compensate, step.name, "compensate"):
                step.applied = False
            else:
                ok = False
        return ok

    async def _attempt(self, undo: Action, name: str, kind: str) -> bool:
        try:
            await undo()
        except Exception:
            logger.exception(
                "%s of trip %s: %s of step '%s' failed",
                self.operation, self.entity_id, kind, name,
            )
            return False
        logger.warning(
            "%s of trip %s: %s of step '%s' applied",
            self.operation, self.entity_id, kind, name,
        )
        return True
