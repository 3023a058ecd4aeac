"""Ordered execution of boot stages.

Stages run strictly one at a time, in list order, against one shared
EngineState. A stage whose predicate is false is skipped. A stage that
raises a recoverable EngineError is logged as degraded and boot moves on.
Any other failure aborts boot: the remaining stages never run, the
failure callback receives the stage name and the error, and BootError is
raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Sequence

from fabengine.engine.errors import BootError, StageTimeout, is_fatal
from fabengine.engine.state import EngineState

logger = logging.getLogger(__name__)

StageFn = Callable[[EngineState], Awaitable[None]]
Predicate = Callable[[EngineState], bool]
FailureCallback = Callable[[str, BaseException], None]


@dataclass(frozen=True)
class Stage:
    """A named unit of boot work.

    Attributes:
        name: Stage name used in logs and failure reports
        run: Coroutine function taking the shared state
        applies: Predicate deciding whether the stage runs at all
        skip_reason: Logged when the predicate is false
    """

    name: str
    run: StageFn
    applies: Predicate | None = None
    skip_reason: str = "not applicable"

    def is_applicable(self, state: EngineState) -> bool:
        return self.applies is None or bool(self.applies(state))


class StageOutcome(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass
class StageReport:
    name: str
    outcome: StageOutcome
    error: BaseException | None = None


def _log_failure(stage: str, error: BaseException) -> None:
    logger.error(f"Boot failed in stage {stage}: {error}", exc_info=error)


class Sequencer:
    """Runs a fixed list of stages in order."""

    def __init__(
        self,
        stages: Sequence[Stage],
        on_failure: FailureCallback | None = None,
        stage_timeout: float | None = None,
    ):
        names = [stage.name for stage in stages]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Duplicate stage names: {sorted(duplicates)}")
        self.stages = list(stages)
        self.on_failure = on_failure or _log_failure
        self.stage_timeout = stage_timeout
        self.reports: list[StageReport] = []

    async def run(self, state: EngineState) -> EngineState:
        """Run every stage against state.

        Returns:
            The same state object, after the last stage

        Raises:
            BootError: If a stage fails fatally
        """
        self.reports = []
        for index, stage in enumerate(self.stages, start=1):
            label = f"[{index}/{len(self.stages)}] {stage.name}"

            if not stage.is_applicable(state):
                logger.warning(f"Stage {label} skipped: {stage.skip_reason}")
                self.reports.append(StageReport(stage.name, StageOutcome.SKIPPED))
                continue

            logger.debug(f"Stage {label} starting")
            try:
                await self._run_stage(stage, state)
            except Exception as e:
                if not is_fatal(e):
                    logger.warning(f"Stage {label} degraded: {e}")
                    self.reports.append(
                        StageReport(stage.name, StageOutcome.DEGRADED, e)
                    )
                    continue
                self.reports.append(StageReport(stage.name, StageOutcome.FAILED, e))
                self.on_failure(stage.name, e)
                raise BootError(stage.name, e) from e

            logger.debug(f"Stage {label} ok")
            self.reports.append(StageReport(stage.name, StageOutcome.OK))

        return state

    async def _run_stage(self, stage: Stage, state: EngineState) -> None:
        if self.stage_timeout is None:
            await stage.run(state)
            return
        try:
            await asyncio.wait_for(stage.run(state), timeout=self.stage_timeout)
        except asyncio.TimeoutError as e:
            raise StageTimeout(
                f"did not finish within {self.stage_timeout}s", stage=stage.name
            ) from e
