"""Tests for scripts/run_mixing.py argument handling."""

import importlib.util
from pathlib import Path

import pytest


SCRIPT = Path(__file__).parent.parent / "scripts" / "run_mixing.py"


@pytest.fixture(scope='module')
def run_mixing():
    spec = importlib.util.spec_from_file_location("run_mixing", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class TestParseArgs:
    def test_defaults(self, run_mixing):
        args = run_mixing.parse_args([])
        assert args.config is None
        assert args.scenario is None
        assert not args.perf

    def test_base_and_scenario(self, run_mixing):
        args = run_mixing.parse_args(
            ["configs/default.yaml", "--scenario", "configs/collapse.yaml", "--workers", "2"])
        assert args.config == "configs/default.yaml"
        assert args.scenario == "configs/collapse.yaml"
        assert args.workers == 2

    def test_scenario_without_base_rejected(self, run_mixing, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run_mixing.parse_args(["--scenario", "configs/collapse.yaml"])
        assert exc_info.value.code == 2
        assert "base config" in capsys.readouterr().err
