"""Fail-isolated concurrent fan-out over independent branches."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from chatloop.errors import BranchLaunchError

logger = logging.getLogger(__name__)

BranchOperation = Callable[[], Awaitable[Any]]
BranchStatus = Literal["ok", "failed"]


def format_elapsed(seconds: float) -> str:
    """Render a duration the way clients display it: one decimal, seconds."""
    return f"{max(0.0, seconds):.1f}s"


@dataclass(frozen=True, slots=True)
class Branch:
    branch_id: str
    operation: BranchOperation


@dataclass(frozen=True, slots=True)
class BranchOutcome:
    branch_id: str
    status: BranchStatus
    payload: Any = None
    error: str | None = None
    elapsed_seconds: float = 0.0
    exception: Exception | None = field(default=None, compare=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @property
    def elapsed(self) -> str:
        return format_elapsed(self.elapsed_seconds)


class ConcurrentBranchRunner:
    """Launch every branch at once and wait for all of them to settle.

    Outcomes come back in dispatch order. A failing or timed-out branch never
    cancels its siblings.
    """

    def __init__(self, *, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds

    async def run_all(self, branches: Sequence[Branch]) -> list[BranchOutcome]:
        self._check(branches)
        if not branches:
            return []
        outcomes = await asyncio.gather(*(self._run_one(branch) for branch in branches))
        return list(outcomes)

    @staticmethod
    def _check(branches: Sequence[Branch]) -> None:
        seen: set[str] = set()
        for position, branch in enumerate(branches):
            if not isinstance(branch, Branch):
                raise BranchLaunchError(f"branch {position} is not a Branch descriptor")
            if not isinstance(branch.branch_id, str) or not branch.branch_id.strip():
                raise BranchLaunchError(f"branch {position} has no id")
            if not callable(branch.operation):
                raise BranchLaunchError(f"branch {branch.branch_id} has no callable operation")
            if branch.branch_id in seen:
                raise BranchLaunchError(f"duplicate branch id: {branch.branch_id}")
            seen.add(branch.branch_id)

    async def _run_one(self, branch: Branch) -> BranchOutcome:
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self.timeout_seconds):
                payload = await branch.operation()
        except TimeoutError:
            elapsed = time.perf_counter() - started
            logger.warning(
                "branch.timeout id=%s elapsed=%s", branch.branch_id, format_elapsed(elapsed)
            )
            return BranchOutcome(
                branch_id=branch.branch_id,
                status="failed",
                error=f"timed out after {format_elapsed(elapsed)}",
                elapsed_seconds=elapsed,
            )
        except Exception as exc:
            elapsed = time.perf_counter() - started
            logger.warning(
                "branch.failed id=%s elapsed=%s error=%s: %s",
                branch.branch_id,
                format_elapsed(elapsed),
                type(exc).__name__,
                exc,
            )
            return BranchOutcome(
                branch_id=branch.branch_id,
                status="failed",
                error=str(exc) or type(exc).__name__,
                elapsed_seconds=elapsed,
                exception=exc,
            )
        elapsed = time.perf_counter() - started
        logger.info("branch.ok id=%s elapsed=%s", branch.branch_id, format_elapsed(elapsed))
        return BranchOutcome(
            branch_id=branch.branch_id,
            status="ok",
            payload=payload,
            elapsed_seconds=elapsed,
        )
