"""Tests for the threadbudget CLI module."""

import argparse
import json
from unittest.mock import MagicMock, patch

import pytest

from conftest import (
    GOMP_PATH,
    INTEL_OMP_PATH,
    LLVM_OMP_PATH,
    FakeThreadPool,
    make_context,
    openmp_library,
)
from threadbudget.cli import _setup_logging, cmd_exec, main


def _conflicting_context():
    return make_context(
        {
            INTEL_OMP_PATH: openmp_library(FakeThreadPool()),
            LLVM_OMP_PATH: openmp_library(FakeThreadPool()),
        }
    )


class TestSetupLogging:
    """Tests for _setup_logging."""

    def test_runs_at_both_levels(self):
        _setup_logging(verbose=False)
        _setup_logging(verbose=True)
        # basicConfig only applies to root; just verify it runs without error


class TestInfo:
    """Tests for the info command."""

    def test_info_json(self, context, capsys):
        with patch("threadbudget.context.get_default_context", return_value=context):
            main(["info", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert [entry["vendor"] for entry in data] == ["gnu", "openblas", "tbb"]
        assert set(data[0]) == {
            "path",
            "vendor",
            "api_kind",
            "fork_safe",
            "controllable",
            "current_limit",
            "native_max",
        }

    def test_info_table(self, context, capsys):
        with patch("threadbudget.context.get_default_context", return_value=context):
            main(["-v", "info"])

        out = capsys.readouterr().out
        assert GOMP_PATH in out
        assert "read-only" in out
        assert "0.3.21" in out

    def test_info_imports_modules(self, context):
        with patch("threadbudget.context.get_default_context", return_value=context), \
                patch("threadbudget.cli.importlib.import_module") as mock_import:
            main(["info", "--import", "numpy", "--import", "scipy.linalg"])

        assert [c.args[0] for c in mock_import.call_args_list] == ["numpy", "scipy.linalg"]

    def test_info_bad_import_exits(self, context):
        with patch("threadbudget.context.get_default_context", return_value=context), \
                patch("threadbudget.cli.importlib.import_module", side_effect=ImportError("nope")):
            with pytest.raises(SystemExit) as exc_info:
                main(["info", "--import", "missing_module"])

        assert exc_info.value.code == 1


class TestCheck:
    """Tests for the check command."""

    def test_check_json(self, capsys):
        with patch("threadbudget.context.get_default_context", return_value=_conflicting_context()):
            main(["check", "--json"])

        data = json.loads(capsys.readouterr().out)
        assert [f["rule_id"] for f in data] == ["openmp-intel-llvm"]
        assert data[0]["severity"] == "fatal"
        assert data[0]["involved_paths"] == [INTEL_OMP_PATH, LLVM_OMP_PATH]

    def test_check_strict_exits_on_fatal(self, capsys):
        with patch("threadbudget.context.get_default_context", return_value=_conflicting_context()):
            with pytest.raises(SystemExit) as exc_info:
                main(["check", "--strict"])

        assert exc_info.value.code == 1
        assert "[FATAL] openmp-intel-llvm" in capsys.readouterr().out

    def test_check_strict_passes_without_fatal(self, context):
        with patch("threadbudget.context.get_default_context", return_value=context):
            main(["check", "--strict"])


class TestExec:
    """Tests for the exec command."""

    def test_exec_sets_thread_env(self):
        with patch("threadbudget.cli.subprocess.run", return_value=MagicMock(returncode=0)) as mock_run:
            with pytest.raises(SystemExit) as exc_info:
                main(["exec", "--limit", "2", "--", "python", "-c", "pass"])

        assert exc_info.value.code == 0
        argv = mock_run.call_args.args[0]
        env = mock_run.call_args.kwargs["env"]
        assert argv == ["python", "-c", "pass"]
        assert env["OMP_NUM_THREADS"] == "2"
        assert env["OPENBLAS_NUM_THREADS"] == "2"

    def test_exec_propagates_return_code(self):
        with patch("threadbudget.cli.subprocess.run", return_value=MagicMock(returncode=3)):
            with pytest.raises(SystemExit) as exc_info:
                main(["exec", "--limit", "1", "--", "false"])

        assert exc_info.value.code == 3

    def test_exec_without_command(self):
        args = argparse.Namespace(limit=2, argv=["--"], verbose=False)

        with pytest.raises(SystemExit) as exc_info:
            cmd_exec(args)

        assert exc_info.value.code == 2

    def test_exec_rejects_non_positive_limit(self):
        args = argparse.Namespace(limit=0, argv=["true"], verbose=False)

        with pytest.raises(SystemExit) as exc_info:
            cmd_exec(args)

        assert exc_info.value.code == 2

    def test_exec_missing_command(self):
        with patch("threadbudget.cli.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(SystemExit) as exc_info:
                main(["exec", "--limit", "2", "--", "no-such-binary"])

        assert exc_info.value.code == 127


class TestMain:
    """Tests for argument parsing."""

    def test_no_command_exits(self):
        with pytest.raises(SystemExit) as exc_info:
            main([])

        assert exc_info.value.code == 2

    def test_limit_required(self):
        with pytest.raises(SystemExit):
            main(["exec", "true"])
