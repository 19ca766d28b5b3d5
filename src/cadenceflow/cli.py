"""Command-line interface for cadenceflow.

Usage:
    cadenceflow detect
    cadenceflow presets
    cadenceflow compile --preset balanced
    cadenceflow compile --validate-only /tmp/cadenceflow/cadenceflow_<id>.json
    cadenceflow sweep
    cadenceflow play episode01.mkv --preset fast
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from . import __version__
from .config import Config, default_config_path
from .core.types import HardwareProfile, QualityPreset
from .engine.opencv import OpenCVPlaybackEngine
from .exceptions import CadenceflowError, format_user_message
from .hardware import HardwareDetector, default_preset_for, recommended_parameters
from .orchestrator import PipelineOrchestrator
from .persistence.artifact_store import ArtifactStore
from .pipeline.artifact import load_artifact
from .pipeline.compiler import PipelineCompiler
from .presets import preset_table, resolve
from .synthesis.registry import SynthesisRegistry
from .utils.logging import configure_from_settings

CADENCEFLOW_THEME = Theme({
    "brand": "bold cyan",
    "success": "bold green",
    "error": "bold red",
    "warning": "bold yellow",
    "muted": "dim white",
    "path": "underline cyan",
    "fps": "cyan",
})

console = Console(theme=CADENCEFLOW_THEME)


# =============================================================================
# Helpers
# =============================================================================

def load_config(args: argparse.Namespace) -> Config:
    """Load the config file and apply command-line overrides."""
    path = Path(args.config) if args.config else default_config_path()
    config = Config.from_file(path)

    overrides: Dict[str, Any] = {}
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_format:
        overrides["log_format"] = args.log_format
    if args.log_file:
        overrides["log_file"] = args.log_file
    if args.artifact_dir:
        overrides["artifact_dir"] = args.artifact_dir
    if args.model_dir:
        overrides["model_dir"] = args.model_dir
    if getattr(args, "preset", None):
        overrides["quality_preset"] = args.preset
    if getattr(args, "no_auto_enable", False):
        overrides["auto_enable_on_load"] = False

    if overrides:
        config = Config.from_dict({**config.to_dict(), **overrides})
    return config


def detect_profile(config: Config) -> HardwareProfile:
    return HardwareDetector(config.detector_config()).detect_or_fallback()


def build_store(config: Config) -> ArtifactStore:
    return ArtifactStore(config.artifact_dir, config.retention_seconds)


def build_compiler(config: Config, store: ArtifactStore) -> PipelineCompiler:
    registry = SynthesisRegistry(config.model_dir, config.allow_blend_fallback)
    return PipelineCompiler(store, registry, config)


def _parameters_table(title: str, rows: Dict[str, Dict[str, Any]]) -> Table:
    table = Table(title=title, header_style="brand")
    table.add_column("Preset")
    table.add_column("Height", justify="right")
    table.add_column("Scene threshold", justify="right")
    table.add_column("Model")
    table.add_column("UHD")
    table.add_column("Scaling")
    for name, params in rows.items():
        table.add_row(
            name,
            str(params["target_height"]),
            f"{params['scene_threshold']:.2f}",
            params["model_id"],
            "yes" if params["uhd_mode"] else "no",
            params["scaling"],
        )
    return table


# =============================================================================
# Commands
# =============================================================================

def cmd_detect(args: argparse.Namespace, config: Config) -> int:
    """Show the hardware profile and recommended preset."""
    profile = detect_profile(config)
    table = Table(title="Hardware", show_header=False)
    table.add_column("Field", style="muted")
    table.add_column("Value")
    for key, value in profile.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)

    preset = default_preset_for(profile.tier)
    console.print(f"Recommended preset: [brand]{preset.value}[/brand]")
    console.print(_parameters_table("Tier defaults", {profile.tier.value: recommended_parameters(profile.tier).to_dict()}))
    return 0


def cmd_presets(args: argparse.Namespace, config: Config) -> int:
    """List the fixed presets."""
    console.print(_parameters_table("Quality presets", preset_table()))
    return 0


def cmd_compile(args: argparse.Namespace, config: Config) -> int:
    """Compile an artifact, or validate an existing one."""
    if args.validate_only:
        artifact = load_artifact(args.validate_only)
        console.print(f"[success]Valid[/success] artifact {artifact.artifact_id} "
                      f"(backend {artifact.backend}, {len(artifact.stages)} stages)")
        return 0

    profile = detect_profile(config)
    preset = config.quality_preset or default_preset_for(profile.tier)
    params = resolve(preset, profile, config.custom_or_none if preset is QualityPreset.CUSTOM else None)

    store = build_store(config)
    artifact = build_compiler(config, store).compile(params, profile.device_index)
    console.print(f"Compiled [brand]{preset.value}[/brand] pipeline: [path]{artifact.path}[/path]")
    if args.show:
        console.print_json(artifact.to_json())
    return 0


def cmd_sweep(args: argparse.Namespace, config: Config) -> int:
    """Delete stale artifacts."""
    store = build_store(config)
    removed = store.sweep()
    console.print(f"Removed {len(removed)} stale artifact(s) from [path]{store.directory}[/path]")
    for path in removed:
        console.print(f"  [muted]{path.name}[/muted]")
    return 0


def cmd_play(args: argparse.Namespace, config: Config) -> int:
    """Play a file through the OpenCV engine with the orchestrator attached."""
    source = Path(args.file)
    if not source.exists():
        console.print(f"[error]File not found:[/error] {source}")
        return 1

    profile = detect_profile(config)
    store = build_store(config)
    compiler = build_compiler(config, store)
    engine = OpenCVPlaybackEngine(
        registry=compiler.registry, realtime=args.realtime, pixel_format=config.output_format,
    )

    with PipelineOrchestrator(engine, compiler, store, profile, config) as orchestrator:
        orchestrator.start_sweeper()
        console.print(Panel(
            f"{source.name}\npreset [brand]{orchestrator.preset.value}[/brand], tier {profile.tier.value}",
            title="cadenceflow",
        ))
        engine.load(str(source))
        try:
            while not engine.wait(args.status_interval):
                _print_status(orchestrator)
        except KeyboardInterrupt:
            console.print("[warning]Interrupted[/warning]")
        finally:
            engine.stop()

        status = orchestrator.status()
        summary = Table(title="Playback summary", show_header=False)
        summary.add_column("Field", style="muted")
        summary.add_column("Value")
        summary.add_row("state", status.state.value)
        summary.add_row("frames decoded", str(engine.frames_decoded))
        summary.add_row("frames rendered", str(engine.frames_rendered))
        summary.add_row("last error", status.last_error or "-")
        console.print(summary)

    engine.close()
    return 1 if status.last_error else 0


def _print_status(orchestrator: PipelineOrchestrator) -> None:
    status = orchestrator.status()
    metrics = orchestrator.metrics()
    fps = f"{metrics.current_fps:.1f}" if metrics.current_fps is not None else "?"
    line = f"[muted]{status.state.value:<9}[/muted] output [fps]{fps}[/fps] fps (expected {metrics.estimated_fps:g})"
    if metrics.dropped_frames:
        line += f", dropped {metrics.dropped_frames}"
    if status.last_error:
        line += f"  [error]{status.last_error}[/error]"
    console.print(line)


# =============================================================================
# Parser / entry point
# =============================================================================

def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="cadenceflow",
        description="cadenceflow - adaptive real-time frame interpolation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show detected GPU tier and the preset it gets by default
  cadenceflow detect

  # Compile a Beauty pipeline and print the artifact
  cadenceflow compile --preset beauty --show

  # Check an artifact file
  cadenceflow compile --validate-only /tmp/cadenceflow/cadenceflow_<id>.json

  # Play a file with interpolation enabled on load
  cadenceflow play episode01.mkv
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", type=str, help=f"Config file (default: {default_config_path()})")
    parser.add_argument("--artifact-dir", type=str, help="Directory for compiled artifacts")
    parser.add_argument("--model-dir", type=str, help="Directory holding model files")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--log-format", choices=["text", "json"])
    parser.add_argument("--log-file", type=str, help="Write logs to a rotating file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    presets = [p.value for p in QualityPreset]

    detect_parser = subparsers.add_parser("detect", help="Show hardware tier and recommended preset")
    detect_parser.set_defaults(func=cmd_detect)

    presets_parser = subparsers.add_parser("presets", help="List quality presets")
    presets_parser.set_defaults(func=cmd_presets)

    compile_parser = subparsers.add_parser("compile", help="Compile a pipeline artifact")
    compile_parser.add_argument("--preset", choices=presets, help="Quality preset (default: from hardware tier)")
    compile_parser.add_argument("--show", action="store_true", help="Print the compiled artifact")
    compile_parser.add_argument("--validate-only", metavar="FILE", help="Validate an existing artifact file")
    compile_parser.set_defaults(func=cmd_compile)

    sweep_parser = subparsers.add_parser("sweep", help="Delete stale artifacts")
    sweep_parser.set_defaults(func=cmd_sweep)

    play_parser = subparsers.add_parser("play", help="Play a file with interpolation")
    play_parser.add_argument("file", help="Video file")
    play_parser.add_argument("--preset", choices=presets, help="Quality preset")
    play_parser.add_argument("--no-auto-enable", action="store_true", help="Do not enable on load")
    play_parser.add_argument("--realtime", action="store_true", help="Pace output at the target frame rate")
    play_parser.add_argument("--status-interval", type=float, default=1.0, help="Seconds between status lines")
    play_parser.set_defaults(func=cmd_play)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = load_config(args)
        configure_from_settings(config.log_level, config.log_format, config.log_file)
        return args.func(args, config)
    except CadenceflowError as e:
        console.print(f"[error]Error:[/error] {format_user_message(e)}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
