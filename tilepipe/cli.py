"""Command line interface for tilepipe runs."""

import argparse, json, logging, sys
from pathlib import Path

from tilepipe.cache_paths import get_cache_dir
from tilepipe.config import ContourJob, TerrainJob
from tilepipe.errors import MissingDependencyError, ZeroOutputError
from tilepipe.pipeline import run_contours, run_terrain
from tilepipe.tile_math import BoundingBox, ZoomRange
from tilepipe.transform import get_library_info, get_tool_info
from tilepipe.transform.diagnostics import EXTERNAL_TOOLS, LIBRARIES


log = logging.getLogger(__name__)

RUN_COMMANDS = ("terrain", "contours")

# Flags that consume the following token as their value.
_VALUE_FLAGS = {
    "--bbox",
    "--min-zoom",
    "--max-zoom",
    "--concurrency",
    "--source-url",
    "--cache-dir",
    "--retries",
    "--batch-size",
    "--interval",
    "--index-interval",
    "--transformer",
    "--work-dir",
    "--machine-json",
    "--log-level",
}


def _resolve_log_level(args: argparse.Namespace) -> int:
    """Resolve effective logging level from explicit level or verbosity flags."""
    if args.log_level is not None:
        return getattr(logging, args.log_level)

    # Start from INFO, then apply -v and -q offsets with DEBUG/ERROR clamp.
    level = logging.INFO - (10 * int(args.verbose)) + (10 * int(args.quiet))
    return max(logging.DEBUG, min(logging.ERROR, level))


def _configure_logging(args: argparse.Namespace) -> None:
    """Configure stdlib logging using Python default handler routing."""
    effective_level = _resolve_log_level(args)
    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)
    if not root_logger.handlers:
        logging.basicConfig(level=effective_level)


#===============================================================================
# machine-json injection------------
#===============================================================================


def _find_flag_value(argv: list[str], flag: str) -> str | None:
    """Return the raw value for a CLI flag, supporting '--flag value' and '--flag=value'."""
    for idx, token in enumerate(argv):
        if token == flag:
            return argv[idx + 1] if idx + 1 < len(argv) else None
        if token.startswith(f"{flag}="):
            return token.split("=", 1)[1]
    return None


def _flag_present(argv: list[str], flag: str) -> bool:
    """Return True when a CLI flag is already present in argv."""
    return any(token == flag or token.startswith(f"{flag}=") for token in argv)


def _read_machine_json(machine_json_fp: Path, command: str) -> dict[str, object]:
    """Load a machine-interface JSON payload for one run command."""
    machine_json_path = machine_json_fp.expanduser().resolve()
    assert machine_json_path.exists(), f"machine json does not exist: {machine_json_path}"
    payload = json.loads(machine_json_path.read_text(encoding="utf-8"))
    assert isinstance(payload, dict), f"machine json must be an object: {machine_json_path}"
    # Allow either a direct payload or one nested under the command name.
    if command in payload:
        nested_payload = payload[command]
        assert isinstance(nested_payload, dict), f"machine json '{command}' payload must be an object: {machine_json_path}"
        return nested_payload
    return payload


def _normalize_machine_key(raw_key: str) -> str:
    """Normalize machine-interface keys to argparse destination style."""
    return raw_key.strip().lstrip("-").replace("-", "_")


_COMMON_MACHINE_KEYS = {
    "bbox": "--bbox",
    "min_zoom": "--min-zoom",
    "max_zoom": "--max-zoom",
    "concurrency": "--concurrency",
    "source_url": "--source-url",
    "cache_dir": "--cache-dir",
    "no_progress": "--no-progress",
    "retries": "--retries",
}
_MACHINE_KEYS = {
    "terrain": {**_COMMON_MACHINE_KEYS, "batch_size": "--batch-size", "cache": "--cache"},
    "contours": {
        **_COMMON_MACHINE_KEYS,
        "interval": "--interval",
        "index_interval": "--index-interval",
        "transformer": "--transformer",
        "work_dir": "--work-dir",
    },
}
_BOOL_KEYS = {"no_progress", "cache"}


def _build_machine_cli_tokens(
    command: str,
    payload: dict[str, object],
    argv: list[str],
) -> tuple[list[str], list[str]]:
    """Translate a machine-interface payload into (flag tokens, positional tokens)."""
    machine_key_to_flag = _MACHINE_KEYS[command]
    cli_tokens = []
    positional = []
    for raw_key, value in payload.items():
        key = _normalize_machine_key(raw_key)
        if key == "output":
            if value is not None:
                positional.append(str(value))
            continue
        if key not in machine_key_to_flag:
            raise ValueError(f"unsupported {command} machine-json key: {raw_key}")
        cli_flag = machine_key_to_flag[key]
        # Preserve explicit CLI args as highest precedence.
        if _flag_present(argv, cli_flag):
            continue
        if key in _BOOL_KEYS:
            if not isinstance(value, bool):
                raise ValueError(f"machine-json key '{raw_key}' must be boolean, got {type(value)!r}")
            if value:
                cli_tokens.append(cli_flag)
            continue
        if value is None:
            continue
        if key == "bbox" and isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        cli_tokens.append(f"{cli_flag}={value}")
    return cli_tokens, positional


def _inject_machine_json_args(argv: list[str] | None) -> list[str]:
    """Inject run args from machine-interface JSON before strict argparse validation."""
    argv_tokens = list(sys.argv[1:]) if argv is None else list(argv)
    command_idx = next((i for i, token in enumerate(argv_tokens) if token in RUN_COMMANDS), None)
    if command_idx is None:
        return argv_tokens
    command = argv_tokens[command_idx]
    machine_json_raw = _find_flag_value(argv_tokens, "--machine-json")
    if machine_json_raw is None:
        return argv_tokens
    payload = _read_machine_json(Path(machine_json_raw), command)
    cli_tokens, positional = _build_machine_cli_tokens(command, payload, argv_tokens)

    # An OUTPUT given on the command line wins over the payload's.
    has_output = any(
        not token.startswith("-") and argv_tokens[idx - 1] not in _VALUE_FLAGS
        for idx, token in enumerate(argv_tokens)
        if idx > command_idx
    )
    if has_output:
        positional = []
    return argv_tokens + cli_tokens + positional


#===============================================================================
# job construction------------
#===============================================================================


def _common_overrides(args: argparse.Namespace, defaults) -> dict[str, object]:
    overrides: dict[str, object] = {}
    if args.output is not None:
        overrides["output_fp"] = args.output
    if args.bbox is not None:
        overrides["bbox"] = BoundingBox.parse(args.bbox)
    if args.min_zoom is not None or args.max_zoom is not None:
        min_zoom = args.min_zoom if args.min_zoom is not None else defaults.zoom_range.min_zoom
        max_zoom = args.max_zoom if args.max_zoom is not None else defaults.zoom_range.max_zoom
        overrides["zoom_range"] = ZoomRange(min_zoom, max_zoom)
    if args.concurrency is not None:
        overrides["concurrency"] = args.concurrency
    if args.source_url is not None:
        overrides["source_url"] = args.source_url
    if args.retries is not None:
        overrides["max_retries"] = args.retries
    if args.cache_dir is not None:
        overrides["cache_dir"] = args.cache_dir
    overrides["show_progress"] = not args.no_progress
    return overrides


def build_terrain_job(args: argparse.Namespace) -> TerrainJob:
    defaults = TerrainJob()
    overrides = _common_overrides(args, defaults)
    if args.batch_size is not None:
        overrides["batch_size"] = args.batch_size
    if args.cache and args.cache_dir is None:
        overrides["cache_dir"] = get_cache_dir()
    return TerrainJob(**overrides)


def build_contour_job(args: argparse.Namespace) -> ContourJob:
    defaults = ContourJob()
    overrides = _common_overrides(args, defaults)
    if args.interval is not None:
        overrides["interval"] = args.interval
    if args.index_interval is not None:
        overrides["index_interval"] = args.index_interval
    if args.transformer is not None:
        overrides["transformer"] = args.transformer
    if args.work_dir is not None:
        overrides["work_dir"] = args.work_dir
    return ContourJob(**overrides)


#===============================================================================
# entry points------------
#===============================================================================


def main_cli(args: argparse.Namespace) -> int:
    """Run the CLI command selected by parsed arguments."""
    # Route terrain download.
    if args.command == "terrain":
        summary = run_terrain(build_terrain_job(args), logger=log)
        print(summary.output_fp)
        return 0

    # Route contour generation.
    if args.command == "contours":
        summary = run_contours(build_contour_job(args), logger=log)
        print(summary.output_fp)
        return 0

    # Route doctor command.
    if args.command == "doctor":
        for tool in EXTERNAL_TOOLS:
            tool_info = get_tool_info(tool)
            print(f"{tool}_installed={tool_info['installed']}")
            print(f"{tool}_path={tool_info['path']}")
        for dist_name in LIBRARIES:
            lib_info = get_library_info(dist_name)
            print(f"{dist_name}_installed={lib_info['installed']}")
            print(f"{dist_name}_version={lib_info['version']}")
        return 0

    raise ValueError(f"unsupported command path: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """Run the tilepipe CLI and return an exit code."""
    args = _parse_arguments(argv)
    _configure_logging(args)
    try:
        return main_cli(args)
    except (MissingDependencyError, ZeroOutputError) as err:
        log.error(f"{err}")
        return 1
    except KeyboardInterrupt:
        log.error("interrupted")
        return 1
    except Exception as err:
        log.error(f"{err}")
        log.debug("unhandled CLI exception", exc_info=True)
        return 1


def _add_run_arguments(parser: argparse.ArgumentParser, default_output: str) -> None:
    """Register the options shared by terrain and contour runs."""
    parser.add_argument(
        "output",
        nargs="?",
        type=Path,
        default=None,
        help=f"Output MBTiles path. Defaults to {default_output}",
    )
    parser.add_argument(
        "--machine-json",
        type=Path,
        default=None,
        help="Optional machine-interface JSON with CLI-equivalent run params.",
    )
    parser.add_argument("--bbox", default=None, help="Bounding box as 'west,south,east,north' in degrees.")
    parser.add_argument("--min-zoom", type=int, default=None, help="Lowest zoom level to produce.")
    parser.add_argument("--max-zoom", type=int, default=None, help="Highest zoom level to produce.")
    parser.add_argument("--concurrency", type=int, default=None, help="Number of concurrent workers.")
    parser.add_argument("--source-url", default=None, help="Override the source base URL.")
    parser.add_argument("--retries", type=int, default=None, help="Attempts per item for transient failures.")
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Directory for downloaded source tiles.",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bar; log periodic status lines instead.",
    )


def _parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for tilepipe."""
    parser = argparse.ArgumentParser(prog="tilepipe", description="Resumable elevation tile acquisition.")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeatable).",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Decrease logging verbosity (repeatable).",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        default=None,
        help="Explicit log level override.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Register terrain download command.
    terrain_parser = subparsers.add_parser("terrain", help="Download Terrarium elevation tiles into MBTiles.")
    _add_run_arguments(terrain_parser, "data/terrain.mbtiles")
    terrain_parser.add_argument("--batch-size", type=int, default=None, help="Tiles per committed transaction.")
    terrain_parser.add_argument(
        "--cache",
        action="store_true",
        help="Keep downloaded tiles in the user cache directory.",
    )

    # Register contour generation command.
    contours_parser = subparsers.add_parser("contours", help="Generate contour vector tiles from SRTM cells.")
    _add_run_arguments(contours_parser, "data/contours.mbtiles")
    contours_parser.add_argument("--interval", type=int, default=None, help="Meters between contour lines.")
    contours_parser.add_argument(
        "--index-interval",
        type=int,
        default=None,
        help="Meters between index contour lines.",
    )
    contours_parser.add_argument(
        "--transformer",
        choices=("gdal", "array"),
        default=None,
        help="Contouring backend: GDAL command-line tools or in-process contourpy.",
    )
    contours_parser.add_argument(
        "--work-dir",
        type=Path,
        default=None,
        help="Directory for per-cell feeds. Defaults to <output dir>/contours_work",
    )

    # Register diagnostic command.
    subparsers.add_parser("doctor", help="Report external tool and library availability.")
    return parser.parse_args(_inject_machine_json_args(argv))


if __name__ == "__main__":
    raise SystemExit(main())
