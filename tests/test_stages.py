"""Tests for the subprocess stage runner."""

import shlex
import sys

import pytest

from hic_events.errors import StageFailure
from hic_events.stages import EXIT_NOT_FOUND, StageRunner, build_command

PY = shlex.quote(sys.executable)


def _runner(**executables):
    return StageRunner(executables=executables)


class TestStageRunner:
    def test_build_command(self):
        assert build_command("python -m frzout", "oversamples=5 'a b'") == ["python", "-m", "frzout", "oversamples=5", "a b"]
        with pytest.raises(ValueError):
            build_command("   ")

    def test_success_runs_in_workdir(self, tmp_path):
        wd = tmp_path / "hydro"
        runner = _runner(hydro=f"{PY} -c")
        runner.run("hydro", "\"open('surface.dat', 'w').write('x')\"", wd)
        assert (wd / "surface.dat").read_text() == "x"

    def test_nonzero_exit_raises(self, tmp_path):
        runner = _runner(hydro=f"{PY} -c")
        with pytest.raises(StageFailure) as excinfo:
            runner.run("hydro", "'import sys; sys.exit(3)'", tmp_path)
        assert excinfo.value.exit_code == 3
        assert excinfo.value.stage == "hydro"
        assert "sys.exit(3)" in excinfo.value.command

    def test_missing_binary(self, tmp_path):
        runner = _runner(sampler="definitely-not-a-real-binary-xyz")
        with pytest.raises(StageFailure) as excinfo:
            runner.run("sampler", "", tmp_path)
        assert excinfo.value.exit_code == EXIT_NOT_FOUND

    def test_unknown_stage(self, tmp_path):
        with pytest.raises(KeyError):
            _runner().run("hydro", "", tmp_path)

    def test_command_logged_and_output_captured(self, tmp_path):
        runner = _runner(afterburner=f"{PY} -c")
        runner.run("afterburner", "'print(\"hello from stage\")'", tmp_path)
        log = (tmp_path / "afterburner.log").read_text()
        assert "CMD:" in log
        assert "hello from stage" in log
