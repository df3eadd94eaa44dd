import asyncio
import sys

from deployer.services.process_runner import ProcessRunner

PY = sys.executable


async def test_captures_both_streams_on_success():
    runner = ProcessRunner()
    result = await runner.run([PY, "-c", "import sys; print('out'); print('err', file=sys.stderr)"])

    assert result.ok
    assert result.returncode == 0
    assert result.stdout.strip() == "out"
    assert result.stderr.strip() == "err"


async def test_non_zero_exit_keeps_streams_and_reports_fault():
    runner = ProcessRunner()
    result = await runner.run([PY, "-c", "import sys; print('partial'); sys.stderr.write('boom'); sys.exit(3)"])

    assert not result.ok
    assert result.returncode == 3
    assert result.error == "exited with status 3"
    assert result.stdout.strip() == "partial"
    assert result.stderr == "boom"
    assert not result.timed_out


async def test_spawn_failure_is_reported_not_raised(tmp_path):
    runner = ProcessRunner()
    result = await runner.run([str(tmp_path / "no-such-binary")])

    assert not result.ok
    assert "failed to start" in result.error
    assert result.returncode is None


async def test_env_overlays_process_environment(monkeypatch):
    monkeypatch.setenv("AMBIENT_VALUE", "from-parent")
    runner = ProcessRunner()
    script = "import os; print(os.environ['AMBIENT_VALUE'], os.environ['RPC_ENDPOINT'])"
    result = await runner.run([PY, "-c", script], env={"RPC_ENDPOINT": "http://rpc"})

    assert result.stdout.split() == ["from-parent", "http://rpc"]


async def test_runs_in_working_directory(tmp_path):
    runner = ProcessRunner()
    result = await runner.run([PY, "-c", "import os; print(os.getcwd())"], cwd=str(tmp_path))

    assert result.stdout.strip() == str(tmp_path.resolve())


async def test_timeout_kills_the_process():
    runner = ProcessRunner()
    result = await runner.run([PY, "-c", "import time; print('started', flush=True); time.sleep(30)"], timeout=0.5)

    assert result.timed_out
    assert not result.ok
    assert "timed out" in result.error
    assert result.returncode is not None


async def test_output_over_the_limit_is_a_fault():
    runner = ProcessRunner(max_output_bytes=1000)
    result = await runner.run([PY, "-c", "import sys; sys.stdout.write('x' * 5000)"])

    assert not result.ok
    assert "exceeded 1000 bytes" in result.error
    assert len(result.stdout) <= 1000


async def test_cancellation_propagates():
    runner = ProcessRunner()
    task = asyncio.ensure_future(runner.run([PY, "-c", "import time; time.sleep(30)"]))
    await asyncio.sleep(0.3)
    task.cancel()

    try:
        await task
    except asyncio.CancelledError:
        pass
    else:
        raise AssertionError("run() swallowed the cancellation")
