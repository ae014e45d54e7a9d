import threading

from file2md_backend.tasks import BackgroundRunner


def test_run_now_executes_inline():
    calls = []
    runner = BackgroundRunner(run_now=True)
    assert runner.spawn(calls.append, "x") is None
    assert calls == ["x"]


def test_run_now_swallows_and_logs_errors(caplog):
    def _boom():
        raise RuntimeError("nope")

    BackgroundRunner(run_now=True).spawn(_boom)
    assert "Background task _boom failed" in caplog.text


def test_spawn_runs_off_the_calling_thread():
    runner = BackgroundRunner()
    seen = []
    try:
        future = runner.spawn(lambda: seen.append(threading.current_thread().name))
        future.result(timeout=5)
    finally:
        runner.shutdown()
    assert seen and seen[0].startswith("file2md-bg")


def test_failed_background_task_does_not_propagate():
    runner = BackgroundRunner()
    try:
        future = runner.spawn(lambda: 1 / 0)
        assert isinstance(future.exception(timeout=5), ZeroDivisionError)
    finally:
        runner.shutdown()
