"""Tests for the command-line interface."""
import json
import os
import time
from unittest.mock import patch

import pytest

from cadenceflow.cli import create_parser, load_config, main
from cadenceflow.config import Config
from cadenceflow.core.types import QualityPreset

from helpers import artifact_files


@pytest.fixture
def cli_env(tmp_path, mid_profile):
    """Config file plus patched hardware probe; returns base argv and artifact dir."""
    artifact_dir = tmp_path / "artifacts"
    config_path = Config(
        artifact_dir=artifact_dir,
        model_dir=tmp_path / "models",
        cadence_sample_frames=10,
    ).save(tmp_path / "config.yaml")
    with patch("cadenceflow.cli.HardwareDetector.detect_or_fallback", return_value=mid_profile):
        yield ["--config", str(config_path)], artifact_dir


class TestArgumentParsing:
    """Test CLI argument parsing."""

    def test_compile_command(self):
        args = create_parser().parse_args(["compile", "--preset", "beauty", "--show"])
        assert args.command == "compile"
        assert args.preset == "beauty"
        assert args.show is True
        assert args.validate_only is None

    def test_validate_only(self):
        args = create_parser().parse_args(["compile", "--validate-only", "a.json"])
        assert args.validate_only == "a.json"

    def test_play_command(self):
        args = create_parser().parse_args(["--log-level", "DEBUG", "play", "movie.mkv", "--no-auto-enable"])
        assert args.file == "movie.mkv"
        assert args.no_auto_enable is True
        assert args.log_level == "DEBUG"
        assert args.status_interval == 1.0

    def test_invalid_preset(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["compile", "--preset", "ultra"])

    def test_no_command(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()


class TestLoadConfig:

    def test_overrides(self, tmp_path):
        args = create_parser().parse_args([
            "--config", str(tmp_path / "missing.yaml"),
            "--artifact-dir", str(tmp_path / "out"),
            "--log-format", "json",
            "play", "x.mkv", "--preset", "fast", "--no-auto-enable",
        ])
        config = load_config(args)
        assert config.artifact_dir == tmp_path / "out"
        assert config.log_format == "json"
        assert config.quality_preset == QualityPreset.FAST
        assert config.auto_enable_on_load is False

    def test_defaults_without_file(self, tmp_path):
        args = create_parser().parse_args(["--config", str(tmp_path / "missing.yaml"), "sweep"])
        assert load_config(args).retention_seconds == 3600.0


class TestCommands:
    """Test command dispatch end to end."""

    def test_presets(self, cli_env, capsys):
        base, _ = cli_env
        assert main(base + ["presets"]) == 0
        out = capsys.readouterr().out
        assert "balanced" in out
        assert "beauty" in out

    def test_detect(self, cli_env, capsys):
        base, _ = cli_env
        assert main(base + ["detect"]) == 0
        out = capsys.readouterr().out
        assert "RTX 4060" in out
        assert "balanced" in out

    def test_compile(self, cli_env):
        base, artifact_dir = cli_env
        assert main(base + ["compile", "--preset", "fast"]) == 0
        files = artifact_files(artifact_dir)
        assert len(files) == 1
        document = json.loads(files[0].read_text())
        assert document["parameters"]["target_height"] == 540

    def test_compile_then_validate(self, cli_env, capsys):
        base, artifact_dir = cli_env
        main(base + ["compile"])
        path = artifact_files(artifact_dir)[0]
        capsys.readouterr()

        assert main(base + ["compile", "--validate-only", str(path)]) == 0
        assert "Valid" in capsys.readouterr().out

    def test_validate_rejects_bad_file(self, cli_env, tmp_path, capsys):
        base, _ = cli_env
        bad = tmp_path / "cadenceflow_bad.json"
        bad.write_text("{}")
        assert main(base + ["compile", "--validate-only", str(bad)]) == 1
        assert "Error" in capsys.readouterr().out

    def test_compile_without_backend_fails(self, cli_env, tmp_path):
        config_path = Config(
            artifact_dir=tmp_path / "artifacts",
            model_dir=tmp_path / "models",
            allow_blend_fallback=False,
        ).save(tmp_path / "strict.yaml")
        assert main(["--config", str(config_path), "compile"]) == 1
        assert artifact_files(tmp_path / "artifacts") == []

    def test_sweep(self, cli_env, capsys):
        base, artifact_dir = cli_env
        main(base + ["compile"])
        path = artifact_files(artifact_dir)[0]
        stamp = time.time() - 2 * 3600
        os.utime(path, (stamp, stamp))

        assert main(base + ["sweep"]) == 0
        assert not path.exists()
        assert "Removed 1" in capsys.readouterr().out

    def test_play_missing_file(self, cli_env, tmp_path):
        base, _ = cli_env
        assert main(base + ["play", str(tmp_path / "missing.mkv")]) == 1

    def test_bad_config_file(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text("quality_preset: ultra\n")
        assert main(["--config", str(path), "presets"]) == 1
        assert "quality_preset" in capsys.readouterr().out
