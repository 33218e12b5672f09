"""Tests for tmplrig npm restore helper."""

import logging
import threading
from dataclasses import replace
from threading import BoundedSemaphore

import pytest

from tmplrig.npm import PackageRestorer

OUTPUT = logging.getLogger("tmplrig.output.test_npm")

# Fails until the attempt counter reaches SUCCEED_ON; leaves a node_modules
# folder behind like a half-finished install would.
FAKE_NPM = """
import pathlib, sys
SUCCEED_ON = {succeed_on}
counter = pathlib.Path("attempts.txt")
n = int(counter.read_text()) + 1 if counter.exists() else 1
counter.write_text(str(n))
marker = pathlib.Path("node_modules")
print("stale" if marker.exists() else "clean")
marker.mkdir(exist_ok=True)
if n < SUCCEED_ON:
    print("npm ERR! EPERM: operation not permitted", file=sys.stderr)
    sys.exit(1)
print("added 1 package")
"""


@pytest.fixture
def client_app(tmp_path):
    path = tmp_path / "ClientApp"
    path.mkdir()
    return path


def restorer_for(config, make_script, succeed_on: int) -> PackageRestorer:
    script = make_script("fake-npm", FAKE_NPM.format(succeed_on=succeed_on))
    return PackageRestorer(replace(config, npm_command=str(script)))


def attempts(client_app) -> int:
    return int((client_app / "attempts.txt").read_text())


def test_restore_succeeds_first_time(config, make_script, client_app):
    restorer = restorer_for(config, make_script, succeed_on=1)
    result = restorer.restore_with_retry(OUTPUT, client_app)
    assert result.exit_code == 0
    assert attempts(client_app) == 1


def test_restore_retries_and_cleans_node_modules(config, make_script, client_app):
    restorer = restorer_for(config, make_script, succeed_on=3)
    result = restorer.restore_with_retry(OUTPUT, client_app)
    assert result.exit_code == 0
    assert attempts(client_app) == 3
    # node_modules was removed after each failure
    assert "clean" in result.output


def test_restore_gives_up_after_three_attempts_and_returns_failure(config, make_script, client_app):
    restorer = restorer_for(config, make_script, succeed_on=99)
    result = restorer.restore_with_retry(OUTPUT, client_app)
    assert result.exit_code == 1
    assert "EPERM" in result.error
    assert attempts(client_app) == 3


def test_restore_attempts_are_configurable(config, make_script, client_app):
    restorer = restorer_for(replace(config, restore_attempts=5), make_script, succeed_on=99)
    restorer.restore_with_retry(OUTPUT, client_app)
    assert attempts(client_app) == 5


def test_restores_are_serialized(config, make_script, tmp_path):
    script = make_script("slow-npm", """
        import pathlib, time
        log = pathlib.Path(__file__).with_name("npm-log.txt")
        with log.open("a") as f:
            f.write(f"start {time.monotonic()}\\n")
        time.sleep(0.3)
        with log.open("a") as f:
            f.write(f"end {time.monotonic()}\\n")
    """)
    restorer = PackageRestorer(replace(config, npm_command=str(script)), BoundedSemaphore(1))
    dirs = []
    for i in range(3):
        d = tmp_path / f"app{i}"
        d.mkdir()
        dirs.append(d)

    threads = [threading.Thread(target=restorer.restore, args=(OUTPUT, d)) for d in dirs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    events = [line.split()[0] for line in (tmp_path / "npm-log.txt").read_text().splitlines()]
    assert events == ["start", "end"] * 3


def test_run_script_runs_once(config, client_app, monkeypatch):
    calls = []

    def fake_run(output, working_directory, command_line, **kwargs):
        calls.append((working_directory, command_line))
        return "result"

    monkeypatch.setattr("tmplrig.npm.ProcessRun.run_via_shell", fake_run)
    assert PackageRestorer(config).run_script(OUTPUT, client_app, "lint") == "result"
    assert calls == [(client_app, "npm run lint")]


def test_any_failure_is_retried(config, make_script, client_app):
    script = make_script("broken-npm", """
        import pathlib, sys
        counter = pathlib.Path("attempts.txt")
        n = int(counter.read_text()) + 1 if counter.exists() else 1
        counter.write_text(str(n))
        print("npm ERR! 404 Not Found - left-pad", file=sys.stderr)
        sys.exit(1)
    """)
    restorer = PackageRestorer(replace(config, npm_command=str(script)))
    result = restorer.restore_with_retry(OUTPUT, client_app)
    assert result.exit_code == 1
    assert "404 Not Found" in result.error
    assert attempts(client_app) == 3
