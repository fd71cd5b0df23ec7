"""Spawn strategy tests.

Every strategy must give the same observable behaviour: exit codes, 127 for
programs that cannot run, working directory, environment and no leaked
descriptors.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from conftest import IS_WINDOWS, SPAWNERS, child_argv
from procpump.runtime import (
    ForkExecSpawner,
    PopenSpawner,
    PosixSpawnSpawner,
    Process,
    ProcessRunner,
    ProcessSpec,
    select_spawner,
)
from procpump.runtime.spawner import _untangle

pytestmark = [pytest.mark.integration, pytest.mark.timeout(60)]


def _runner(name: str) -> ProcessRunner:
    return ProcessRunner(spawner=select_spawner(name))


@pytest.mark.parametrize("spawner", SPAWNERS)
class TestExitCodes:
    @pytest.mark.parametrize("code", [0, 1, 42, 255])
    def test_exit_code(self, spawner, code):
        assert _runner(spawner).run(ProcessSpec(child_argv("exit", str(code)))) == code

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX signals")
    @pytest.mark.parametrize("signum", [9, 15])
    def test_killed_by_signal(self, spawner, signum):
        code = _runner(spawner).run(ProcessSpec(child_argv("kill", str(signum))))
        assert code == 128 + signum

    def test_missing_program_is_127(self, spawner, tmp_path: Path):
        missing = str(tmp_path / "no-such-program")
        err = bytearray()
        code = _runner(spawner).run(ProcessSpec([missing], stderr=err))
        assert code == 127

    def test_unknown_name_on_path_is_127(self, spawner):
        code = _runner(spawner).run(ProcessSpec(["procpump-no-such-command-xyz"]))
        assert code == 127

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX permission bits")
    def test_not_executable_is_127(self, spawner, tmp_path: Path):
        script = tmp_path / "script.sh"
        script.write_text("#!/bin/sh\nexit 0\n")
        script.chmod(0o644)
        code = _runner(spawner).run(ProcessSpec([str(script)], stderr=bytearray()))
        assert code == 127


@pytest.mark.parametrize("spawner", SPAWNERS)
class TestEnvironment:
    def test_cwd(self, spawner, temp_workspace: Path):
        out = bytearray()
        spec = ProcessSpec(child_argv("cwd"), cwd=temp_workspace, stdout=out)
        assert _runner(spawner).run(spec) == 0
        assert os.path.realpath(out.decode()) == os.path.realpath(temp_workspace)

    def test_env_replaces_parent_environment(self, spawner, monkeypatch):
        monkeypatch.setenv("PROCPUMP_TEST_PARENT", "parent")
        env = {k: v for k, v in os.environ.items() if k != "PROCPUMP_TEST_PARENT"}
        env["PROCPUMP_TEST_CHILD"] = "child"

        out = bytearray()
        runner = _runner(spawner)
        assert runner.run(ProcessSpec(child_argv("env", "PROCPUMP_TEST_CHILD"), env=env, stdout=out)) == 0
        assert out == b"child"

        out.clear()
        assert runner.run(ProcessSpec(child_argv("env", "PROCPUMP_TEST_PARENT"), env=env, stdout=out)) == 0
        assert out == b"<unset>"

    def test_env_none_inherits(self, spawner, monkeypatch):
        monkeypatch.setenv("PROCPUMP_TEST_PARENT", "inherited")
        out = bytearray()
        spec = ProcessSpec(child_argv("env", "PROCPUMP_TEST_PARENT"), stdout=out)
        assert _runner(spawner).run(spec) == 0
        assert out == b"inherited"

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX descriptor numbers")
    def test_parent_descriptors_not_leaked(self, spawner):
        read_fd, write_fd = os.pipe()
        high_fd = os.dup2(write_fd, 200, inheritable=False)
        try:
            out = bytearray()
            spec = ProcessSpec(child_argv("probe-fd", str(high_fd)), stdout=out)
            assert _runner(spawner).run(spec) == 0
            assert out == b"closed"
        finally:
            os.close(high_fd)
            os.close(read_fd)
            os.close(write_fd)


@pytest.mark.parametrize("spawner", SPAWNERS)
class TestRedirectOrder:
    """A stream bound to another stream's parent descriptor."""

    def test_stderr_to_parent_stdout_while_capturing_stdout(self, spawner, capfd):
        out = bytearray()
        spec = ProcessSpec(child_argv("text", "o", "--stderr", "e"), stdout=out, stderr=1)
        assert _runner(spawner).run(spec) == 0
        captured = capfd.readouterr()
        assert out == b"o"
        assert captured.out == "e"

    def test_swapped_stdout_and_stderr(self, spawner, capfd):
        spec = ProcessSpec(child_argv("text", "o", "--stderr", "e"), stdout=2, stderr=1)
        assert _runner(spawner).run(spec) == 0
        captured = capfd.readouterr()
        assert captured.out == "e"
        assert captured.err == "o"


class TestUntangle:
    def test_sources_overwritten_earlier_are_copied(self):
        read_fd, write_fd = os.pipe()
        try:
            pairs, temps = _untangle([(write_fd, 1), (1, 2)])
            try:
                assert pairs[0] == (write_fd, 1)
                assert pairs[1][1] == 2
                assert pairs[1][0] == temps[0]
                assert temps[0] > 2
                assert not os.get_inheritable(temps[0])
            finally:
                for fd in temps:
                    os.close(fd)
        finally:
            os.close(read_fd)
            os.close(write_fd)

    def test_independent_sources_untouched(self):
        pairs, temps = _untangle([(7, 0), (8, 1), (2, 2)])
        assert pairs == [(7, 0), (8, 1), (2, 2)]
        assert temps == []


@pytest.mark.skipif(IS_WINDOWS, reason="fork is POSIX only")
class TestForkExecSpawner:
    def test_exec_error_reported(self, tmp_path: Path):
        missing = str(tmp_path / "no-such-program")
        err = bytearray()
        runner = ProcessRunner(spawner=ForkExecSpawner())
        process = Process(ProcessSpec([missing], stderr=err), runner=runner)
        process.start()

        assert process.wait() == 127
        assert process.exec_error is not None
        assert ":exec:" in process.exec_error
        assert b"exec failed for: " in err

    def test_chdir_error_reported(self, tmp_path: Path):
        runner = ProcessRunner(spawner=ForkExecSpawner())
        process = Process(
            ProcessSpec(child_argv("exit", "0"), cwd=tmp_path / "missing", stderr=bytearray()),
            runner=runner,
        )
        process.start()

        assert process.wait() == 127
        assert ":chdir:" in process.exec_error


@pytest.mark.skipif(IS_WINDOWS or not hasattr(os, "posix_spawn"), reason="posix_spawn")
class TestPosixSpawnSpawner:
    def test_cwd_uses_fallback(self, temp_workspace: Path):
        calls = []

        class RecordingSpawner(PopenSpawner):
            def spawn(self, argv, cwd, env, bindings):
                calls.append(cwd)
                return super().spawn(argv, cwd, env, bindings)

        runner = ProcessRunner(spawner=PosixSpawnSpawner(fallback=RecordingSpawner()))
        assert runner.run(ProcessSpec(child_argv("exit", "0"), cwd=temp_workspace)) == 0
        assert runner.run(ProcessSpec(child_argv("exit", "0"))) == 0
        assert calls == [temp_workspace]

    def test_missing_program_gives_invalid_handle(self, tmp_path: Path):
        runner = ProcessRunner(spawner=PosixSpawnSpawner())
        process = Process(ProcessSpec([str(tmp_path / "nope")]), runner=runner)
        handle = process.start()
        assert not handle.valid
        assert process.exec_error
        assert process.wait() == 127


class TestSelectSpawner:
    def test_popen(self):
        assert isinstance(select_spawner("popen"), PopenSpawner)

    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX strategies")
    def test_fork(self):
        assert isinstance(select_spawner("fork"), ForkExecSpawner)

    @pytest.mark.skipif(IS_WINDOWS or not hasattr(os, "posix_spawn"), reason="posix_spawn")
    def test_auto_on_posix(self):
        assert isinstance(select_spawner("auto"), PosixSpawnSpawner)

    @pytest.mark.skipif(sys.platform != "win32", reason="Windows only")
    def test_windows_always_popen(self):
        assert isinstance(select_spawner("fork"), PopenSpawner)

    def test_unknown_name_logs_warning(self, caplog):
        with caplog.at_level("WARNING", logger="procpump"):
            select_spawner("bogus")
        assert "Unknown spawn strategy" in caplog.text
