"""Smoke test for the command-line demo."""
from __future__ import annotations

import pytest

from orchestra import demo


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_demo_runs_feature_workflow(capsys: pytest.CaptureFixture[str]) -> None:
    await demo.main()

    out = capsys.readouterr().out
    assert "Registered 8 agents" in out
    assert "finished with status completed" in out
    assert "Completed 6 tasks, 0 failed" in out
