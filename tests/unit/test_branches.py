import asyncio

import pytest

from chatloop.errors import BranchLaunchError
from chatloop.tools import branches
from chatloop.tools.branches import Branch, ConcurrentBranchRunner, format_elapsed


def test_format_elapsed_one_decimal() -> None:
    assert format_elapsed(1.0) == "1.0s"
    assert format_elapsed(0.04) == "0.0s"
    assert format_elapsed(12.349) == "12.3s"
    assert format_elapsed(-0.5) == "0.0s"


@pytest.mark.asyncio
async def test_outcomes_follow_dispatch_order_not_completion_order() -> None:
    async def slow() -> str:
        await asyncio.sleep(0.05)
        return "slow"

    async def fast() -> str:
        return "fast"

    outcomes = await ConcurrentBranchRunner().run_all(
        [Branch("first", slow), Branch("second", fast)]
    )

    assert [item.branch_id for item in outcomes] == ["first", "second"]
    assert [item.payload for item in outcomes] == ["slow", "fast"]
    assert all(item.ok for item in outcomes)


@pytest.mark.asyncio
async def test_one_failing_branch_does_not_affect_siblings() -> None:
    finished: list[str] = []

    async def ok(name: str) -> str:
        await asyncio.sleep(0.02)
        finished.append(name)
        return name

    async def boom() -> str:
        raise RuntimeError("backend exploded")

    outcomes = await ConcurrentBranchRunner().run_all(
        [
            Branch("a", lambda: ok("a")),
            Branch("b", boom),
            Branch("c", lambda: ok("c")),
        ]
    )

    assert len(outcomes) == 3
    assert [item.status for item in outcomes] == ["ok", "failed", "ok"]
    assert outcomes[1].error == "backend exploded"
    assert isinstance(outcomes[1].exception, RuntimeError)
    assert outcomes[0].exception is None
    assert outcomes[1].payload is None
    assert sorted(finished) == ["a", "c"]


@pytest.mark.asyncio
async def test_branch_timeout_is_reported_as_failure() -> None:
    async def hang() -> None:
        await asyncio.sleep(10)

    async def quick() -> int:
        return 1

    outcomes = await ConcurrentBranchRunner(timeout_seconds=0.05).run_all(
        [Branch("stuck", hang), Branch("quick", quick)]
    )

    assert outcomes[0].status == "failed"
    assert outcomes[0].error is not None
    assert outcomes[0].error.startswith("timed out after ")
    assert outcomes[1].ok


@pytest.mark.asyncio
async def test_all_complete_barrier_waits_for_slowest_branch() -> None:
    done = asyncio.Event()

    async def slow() -> None:
        await asyncio.sleep(0.05)
        done.set()

    async def fast() -> None:
        return None

    await ConcurrentBranchRunner().run_all([Branch("fast", fast), Branch("slow", slow)])

    assert done.is_set()


@pytest.mark.asyncio
async def test_elapsed_is_measured_per_branch(monkeypatch: pytest.MonkeyPatch) -> None:
    ticks = iter([10.0, 11.04])
    monkeypatch.setattr(branches.time, "perf_counter", lambda: next(ticks))

    async def op() -> str:
        return "done"

    [outcome] = await ConcurrentBranchRunner().run_all([Branch("only", op)])

    assert outcome.elapsed == "1.0s"
    assert outcome.elapsed_seconds == pytest.approx(1.04)


@pytest.mark.asyncio
async def test_empty_branch_list_returns_empty() -> None:
    assert await ConcurrentBranchRunner().run_all([]) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "bad",
    [
        ["not-a-branch"],
        [Branch("", lambda: asyncio.sleep(0))],
        [Branch("x", "not-callable")],  # type: ignore[arg-type]
    ],
)
async def test_malformed_descriptor_fails_launch(bad: list[object]) -> None:
    with pytest.raises(BranchLaunchError):
        await ConcurrentBranchRunner().run_all(bad)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_duplicate_branch_ids_fail_launch_before_anything_runs() -> None:
    started: list[str] = []

    async def op() -> None:
        started.append("ran")

    with pytest.raises(BranchLaunchError, match="duplicate"):
        await ConcurrentBranchRunner().run_all([Branch("x", op), Branch("x", op)])
    assert started == []
