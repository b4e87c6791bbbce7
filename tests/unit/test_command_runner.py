"""Tests for the command runners."""

from __future__ import annotations

import sys

from relforge.core.command_runner import (
    CommandResult,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)


class TestSubprocessCommandRunner:
    def test_runs_with_exact_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RELFORGE_OUTER", "outer")
        result = SubprocessCommandRunner().run(
            [sys.executable, "-c", "import os; print(sorted(k for k in os.environ if k.startswith('RELFORGE')))"],
            cwd=tmp_path,
            env={"RELFORGE_INNER": "inner"},
        )
        assert result.ok
        assert "RELFORGE_INNER" in result.stdout
        assert "RELFORGE_OUTER" not in result.stdout

    def test_runs_in_cwd(self, tmp_path):
        result = SubprocessCommandRunner().run(
            [sys.executable, "-c", "import os; print(os.getcwd())"],
            cwd=tmp_path,
            env={},
        )
        assert result.stdout.strip() == str(tmp_path.resolve())

    def test_nonzero_exit(self, tmp_path):
        result = SubprocessCommandRunner().run(
            [sys.executable, "-c", "import sys; print('boom', file=sys.stderr); sys.exit(3)"],
            cwd=tmp_path,
            env={},
        )
        assert not result.ok
        assert result.returncode == 3
        assert "boom" in result.tail()

    def test_missing_binary_is_127(self, tmp_path):
        result = SubprocessCommandRunner().run(
            [str(tmp_path / "no-such-binary")], cwd=tmp_path, env={}
        )
        assert result.returncode == 127

    def test_timeout_is_124(self, tmp_path):
        result = SubprocessCommandRunner().run(
            [sys.executable, "-c", "import time; time.sleep(5)"],
            cwd=tmp_path,
            env={},
            timeout=0.2,
        )
        assert result.returncode == 124
        assert "timed out" in result.stderr


class TestRecordingCommandRunner:
    def test_records_and_succeeds(self, tmp_path):
        runner = RecordingCommandRunner()
        result = runner.run(["cargo", "build"], cwd=tmp_path, env={"A": "1"})
        assert result.ok
        assert runner.commands[0].command == ["cargo", "build"]
        assert runner.commands[0].env == {"A": "1"}

    def test_configured_failure(self, tmp_path):
        runner = RecordingCommandRunner(returncodes={"cargo": 101})
        assert runner.run(["cargo", "test"], cwd=tmp_path, env={}).returncode == 101
        assert runner.run(["make"], cwd=tmp_path, env={}).ok

    def test_tail_limits_lines(self):
        result = CommandResult(command=["x"], returncode=1, stdout="\n".join(map(str, range(50))), stderr="")
        assert result.tail(3) == "47\n48\n49"
