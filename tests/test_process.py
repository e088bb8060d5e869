from __future__ import annotations

import sys
import time
from pathlib import Path

import pytest

from upm._process import run_process, truncate_output


def test_truncate_output_keeps_tail() -> None:
    assert truncate_output(b"hello", limit=10) == "hello"
    text = truncate_output(b"0123456789", limit=4)
    assert text == "[... 6 bytes truncated ...]\n6789"


@pytest.mark.asyncio
async def test_run_process_merges_stderr_and_env(tmp_path: Path) -> None:
    code = "import os, sys; print(os.environ['UPM_TEST_VALUE']); print('err', file=sys.stderr); sys.exit(3)"

    outcome = await run_process([sys.executable, "-c", code], cwd=tmp_path, env={"UPM_TEST_VALUE": "42"})

    assert outcome.return_code == 3
    assert "42" in outcome.output
    assert "err" in outcome.output


@pytest.mark.asyncio
async def test_run_process_timeout_kills_child() -> None:
    started = time.monotonic()
    with pytest.raises(TimeoutError):
        await run_process([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
    assert time.monotonic() - started < 10


@pytest.mark.asyncio
async def test_run_process_rejects_empty_and_missing_commands(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        await run_process([])
    with pytest.raises(OSError):
        await run_process([str(tmp_path / "no-such-binary")])
