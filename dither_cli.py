#!/usr/bin/env python3
"""
CLI module for Retro Dither - Command-Line Interface

Provides command-line interface for dithering single images or whole folders
onto the monochrome, CGA or web-safe palettes. Uses Rich for terminal output.
"""

import sys
import json
import logging
import argparse
from pathlib import Path
from typing import Optional, List, Dict, Any

# Rich imports for terminal output
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn
from rich.panel import Panel

# Local imports
from dithering_lib import DitherAlgorithm, DitherError, apply_dithering
from palettes import PaletteId, get_palette
from utils import (
    IMAGE_EXTENSIONS,
    load_image_buffer,
    save_buffer,
    palette_to_hex,
    validate_image_file,
    get_image_info,
)
from config_manager import ConfigManager


# Initialize Rich console
console = Console()

logger = logging.getLogger('retro_dither')


def setup_logging(verbose: bool = False, quiet: bool = False, log_file: Optional[str] = None):
    """
    Setup logging with Rich handler for terminal output.

    Args:
        verbose: Enable verbose (DEBUG) logging
        quiet: Suppress all but ERROR messages
        log_file: Optional path to log file
    """
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    handlers = []

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True
    )
    handlers.append(rich_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setFormatter(
            logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True
    )

    logger.setLevel(level)
    return logger


class CLIProgressCallback:
    """
    Progress bar for a single dithering pass.
    update() matches the engine's progress_callback(fraction, message) signature.
    """

    def __init__(self, description: str = "Dithering..."):
        self.description = description
        self.progress = None
        self.task = None

    def __enter__(self):
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
            transient=True
        )
        self.progress.__enter__()
        self.task = self.progress.add_task(self.description, total=100)
        return self

    def __exit__(self, *args):
        if self.progress:
            self.progress.__exit__(*args)

    def update(self, fraction: float, message: str):
        if self.progress and self.task is not None:
            self.progress.update(self.task, completed=fraction * 100, description=message)


# ==================== Config Schema & Validation ====================

VALID_MODES = ["image", "folder"]
VALID_ALGORITHMS = [a.value for a in DitherAlgorithm]
VALID_PALETTES = [p.value for p in PaletteId]
MAX_SCALE_PERCENT = 400


class ConfigValidationError(Exception):
    """Raised when config validation fails."""
    pass


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _apply_defaults(config: Dict[str, Any], settings: ConfigManager):
    """Fill optional sections from the user's saved preferences."""
    config.setdefault("mode", None)
    for section in ("dithering", "palette", "scale", "final_resize"):
        if section not in config:
            config[section] = {}

    if isinstance(config["dithering"], dict):
        config["dithering"].setdefault("algorithm", settings.get("defaults", "algorithm"))
        config["dithering"].setdefault("num_workers", settings.get("defaults", "num_workers", default=1))
    if isinstance(config["palette"], dict):
        config["palette"].setdefault("id", settings.get("defaults", "palette"))
        config["palette"].setdefault("threshold", settings.get("defaults", "threshold"))
    if isinstance(config["scale"], dict):
        config["scale"].setdefault("percent", settings.get("defaults", "scale"))
    if isinstance(config["final_resize"], dict):
        config["final_resize"].setdefault("enabled", False)
        config["final_resize"].setdefault("multiplier", 2)


def validate_config(config: Dict[str, Any], config_path: Path,
                    settings: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Validate configuration and return normalized config.

    Args:
        config: Raw config dictionary
        config_path: Path to config file (for resolving relative paths)
        settings: Saved preferences supplying defaults for omitted fields

    Returns:
        Validated and normalized config

    Raises:
        ConfigValidationError: If validation fails
    """
    if not isinstance(config, dict):
        raise ConfigValidationError("Configuration must be a JSON object")
    if settings is None:
        settings = ConfigManager()

    errors = []

    if "input" not in config:
        errors.append("Missing required field: 'input'")
    if "output" not in config:
        errors.append("Missing required field: 'output'")
    for key in ("input", "output"):
        if key in config and not isinstance(config[key], str):
            errors.append(f"'{key}' must be a path string")

    _apply_defaults(config, settings)

    mode = config.get("mode")
    if mode and mode not in VALID_MODES:
        errors.append(f"Invalid mode: '{mode}'. Must be one of: {VALID_MODES}")

    dith = config["dithering"]
    if not isinstance(dith, dict):
        errors.append("'dithering' must be an object/dictionary")
    else:
        if dith["algorithm"] not in VALID_ALGORITHMS:
            errors.append(f"Invalid algorithm: '{dith['algorithm']}'. Must be one of: {VALID_ALGORITHMS}")
        if not _is_int(dith["num_workers"]) or dith["num_workers"] < 1:
            errors.append("'dithering.num_workers' must be a positive integer")

    pal = config["palette"]
    if not isinstance(pal, dict):
        errors.append("'palette' must be an object/dictionary")
    else:
        if pal["id"] not in VALID_PALETTES:
            errors.append(f"Invalid palette: '{pal['id']}'. Must be one of: {VALID_PALETTES}")
        if not _is_int(pal["threshold"]) or not 0 <= pal["threshold"] <= 255:
            errors.append("'palette.threshold' must be an integer between 0 and 255")

    scale = config["scale"]
    if not isinstance(scale, dict):
        errors.append("'scale' must be an object/dictionary")
    else:
        percent = scale["percent"]
        if (not isinstance(percent, (int, float)) or isinstance(percent, bool)
                or not 0 < percent <= MAX_SCALE_PERCENT):
            errors.append(f"'scale.percent' must be a number in (0, {MAX_SCALE_PERCENT}]")

    resize = config["final_resize"]
    if not isinstance(resize, dict):
        errors.append("'final_resize' must be an object/dictionary")
    elif not _is_int(resize["multiplier"]) or resize["multiplier"] <= 0:
        errors.append("'final_resize.multiplier' must be a positive integer")

    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  • {e}" for e in errors)
        raise ConfigValidationError(error_msg)

    # Normalize paths (resolve relative to config file)
    config_dir = config_path.parent

    input_path = Path(config["input"])
    if not input_path.is_absolute():
        input_path = (config_dir / input_path).resolve()
    config["input"] = str(input_path)

    output_path = Path(config["output"])
    if not output_path.is_absolute():
        output_path = (config_dir / output_path).resolve()
    config["output"] = str(output_path)

    if not input_path.exists():
        raise ConfigValidationError(f"Input file/directory not found: {config['input']}")
    if mode == "folder" and not input_path.is_dir():
        raise ConfigValidationError(f"Mode 'folder' needs a directory input: {config['input']}")
    if mode == "image" and not input_path.is_file():
        raise ConfigValidationError(f"Mode 'image' needs a file input: {config['input']}")

    return config


def load_config(config_path: Path, settings: Optional[ConfigManager] = None) -> Dict[str, Any]:
    """
    Load and validate configuration from JSON file.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"Invalid JSON in config file:\n  Line {e.lineno}: {e.msg}")
    except OSError as e:
        raise ConfigValidationError(f"Failed to load config file: {e}")

    return validate_config(config, config_path, settings)


def detect_mode(input_path: Path) -> str:
    """
    Auto-detect processing mode based on input path.

    Returns:
        Mode string: "image" or "folder"
    """
    if input_path.is_dir():
        return "folder"

    ext = input_path.suffix.lower()
    if ext in IMAGE_EXTENSIONS:
        return "image"
    raise ConfigValidationError(f"Cannot determine mode for file extension: {ext}")


# ==================== Image Processing ====================

def _dither_file(input_path: Path, output_path: Path, config: Dict[str, Any],
                 show_progress: bool = True):
    dith = config["dithering"]
    pal = config["palette"]

    buffer = load_image_buffer(str(input_path), config["scale"]["percent"])
    logger.debug(f"Working size: {buffer.width}x{buffer.height}")

    options = dict(
        algorithm=dith["algorithm"],
        palette_id=pal["id"],
        threshold=pal["threshold"],
        num_workers=dith["num_workers"],
    )
    if show_progress:
        with CLIProgressCallback(f"{dith['algorithm']} / {pal['id']}") as progress:
            result = apply_dithering(buffer, progress_callback=progress.update, **options)
    else:
        result = apply_dithering(buffer, **options)

    multiplier = config["final_resize"]["multiplier"] if config["final_resize"]["enabled"] else 1
    output_path.parent.mkdir(parents=True, exist_ok=True)
    saved = save_buffer(result, str(output_path), multiplier=multiplier)
    return saved


def process_single_image(config: Dict[str, Any]) -> bool:
    """
    Dither a single image.

    Args:
        config: Validated configuration dictionary

    Returns:
        True if successful, False otherwise
    """
    input_path = Path(config["input"])
    output_path = Path(config["output"])

    try:
        info = get_image_info(str(input_path))
        if info is None:
            logger.error(f"Not a readable image: {input_path}")
            return False
        logger.info(f"Loading image: [cyan]{input_path.name}[/] ({info['width']}x{info['height']}, {info['mode']})")

        logger.info(f"Applying dithering: [cyan]{config['dithering']['algorithm']}[/] "
                    f"onto [cyan]{config['palette']['id']}[/]")
        saved = _dither_file(input_path, output_path, config)

        size_kb = output_path.stat().st_size / 1024
        logger.info(f"[bold green]✓ Image saved successfully![/] {saved.width}x{saved.height} ({size_kb:.1f} KB)")
        return True

    except (DitherError, OSError, ValueError) as e:
        logger.error(f"Failed to process image: {e}", exc_info=logger.isEnabledFor(logging.DEBUG))
        return False


def process_folder(config: Dict[str, Any]) -> bool:
    """
    Dither every image in the input directory into the output directory,
    keeping file names.

    Returns:
        True if every image succeeded
    """
    input_dir = Path(config["input"])
    output_dir = Path(config["output"])

    try:
        files = sorted(p for p in input_dir.iterdir() if validate_image_file(str(p)))
    except OSError as e:
        logger.error(f"Cannot list {input_dir}: {e}")
        return False
    if not files:
        logger.error(f"No images found in {input_dir}")
        return False

    output_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Processing [cyan]{len(files)}[/] images from {input_dir}")

    failed = []
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console
    ) as progress:
        task = progress.add_task("Dithering folder...", total=len(files))
        for path in files:
            progress.update(task, description=path.name)
            try:
                _dither_file(path, output_dir / path.name, config, show_progress=False)
            except (DitherError, OSError, ValueError) as e:
                logger.error(f"Failed to process {path.name}: {e}")
                failed.append(path)
            progress.advance(task)

    done = len(files) - len(failed)
    if failed:
        logger.error(f"{len(failed)} of {len(files)} images failed")
    logger.info(f"[green]✓[/] {done} images written to {output_dir}")
    return not failed


def record_run(settings: ConfigManager, config: Dict[str, Any]):
    """Remember the paths of a successful run in the user's preferences."""
    settings.update_last_path("image", config["input"])
    settings.update_last_path("save", config["output"])
    settings.add_recent_file(config["output"])
    settings.save()


def show_banner():
    """Display application banner."""
    banner = """
[bold cyan]╔═══════════════════════════════════════╗[/]
[bold cyan]║[/]      [bold white]Retro Dither CLI[/] [dim]- v1.0[/]      [bold cyan]║[/]
[bold cyan]║[/]  Palette Dithering for Images       [bold cyan]║[/]
[bold cyan]╚═══════════════════════════════════════╝[/]
"""
    console.print(banner)


def show_help():
    """Display detailed help information."""
    help_text = """
[bold cyan]Retro Dither CLI - Usage[/]

[bold]Basic Usage:[/]
  python dither_cli.py <job.json>           Process with JSON job file
  python dither_cli.py --help               Show this help
  python dither_cli.py --example-config     Generate example job file

[bold]Options:[/]
  --verbose, -v     Enable verbose output
  --quiet, -q       Suppress all but error messages
  --log-file FILE   Write log to file
  --settings FILE   Preferences file used for defaults and recent files

[bold]Examples:[/]
  # Dither a single image
  python dither_cli.py jobs/photo.json

  # Batch process a folder with verbose output
  python dither_cli.py -v jobs/folder.json
"""
    console.print(help_text)

    console.print("  [bold]Dithering Algorithms:[/]")
    for algorithm in DitherAlgorithm:
        console.print(f"    • [cyan]{algorithm.value}[/]")

    console.print("\n  [bold]Palettes:[/]")
    for palette_id in PaletteId:
        colors = get_palette(palette_id)
        preview = " ".join(palette_to_hex(colors[:4]))
        more = f" … ({len(colors)} colors)" if len(colors) > 4 else ""
        console.print(f"    • [cyan]{palette_id.value}[/] {preview}{more}")
    console.print()


def generate_example_config():
    """Generate and print an example job file."""
    example = {
        "_comment": "Retro Dither CLI Configuration",
        "input": "path/to/input.png",
        "output": "path/to/output.png",
        "mode": "image",
        "dithering": {
            "_comment_algorithm": f"Options: {', '.join(VALID_ALGORITHMS)}",
            "algorithm": "floyd-steinberg",
            "num_workers": 1
        },
        "palette": {
            "_comment_id": f"Options: {', '.join(VALID_PALETTES)}",
            "id": "1bit",
            "_comment_threshold": "0-255, only used by the 1bit palette",
            "threshold": 128
        },
        "scale": {
            "percent": 100
        },
        "final_resize": {
            "enabled": False,
            "multiplier": 2
        }
    }

    example_json = json.dumps(example, indent=4)

    console.print("\n[bold cyan]Example Configuration:[/]\n")
    console.print(Panel(example_json, title="job.json", border_style="cyan"))
    console.print("\n[dim]Save this to a .json file and modify as needed.[/]\n")


def main(argv: Optional[List[str]] = None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Retro Dither CLI - Palette Dithering Tool",
        add_help=False  # We'll handle help ourselves
    )

    parser.add_argument('config', nargs='?', help='Path to JSON job file')
    parser.add_argument('--help', '-h', action='store_true', help='Show help')
    parser.add_argument('--example-config', action='store_true', help='Generate example config')
    parser.add_argument('--verbose', '-v', action='store_true', help='Verbose output')
    parser.add_argument('--quiet', '-q', action='store_true', help='Quiet mode (errors only)')
    parser.add_argument('--log-file', type=str, help='Log to file')
    parser.add_argument('--settings', type=str, help='Preferences JSON file')

    args = parser.parse_args(argv)

    # Handle special commands first (before logging setup)
    if args.help:
        show_banner()
        show_help()
        sys.exit(0)

    if args.example_config:
        show_banner()
        generate_example_config()
        sys.exit(0)

    setup_logging(verbose=args.verbose, quiet=args.quiet, log_file=args.log_file)

    if not args.quiet:
        show_banner()

    if not args.config:
        console.print("[bold red]Error:[/] No configuration file specified.\n")
        console.print("Usage: python dither_cli.py <job.json>")
        console.print("       python dither_cli.py --help\n")
        sys.exit(1)

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error(f"Configuration file not found: {config_path}")
        sys.exit(1)

    settings = ConfigManager(args.settings) if args.settings else ConfigManager()

    logger.info(f"Loading configuration from: [cyan]{config_path}[/]")
    try:
        config = load_config(config_path, settings)
    except ConfigValidationError as e:
        logger.error(f"[bold red]{e}[/]")
        sys.exit(1)

    logger.info("[green]✓[/] Configuration validated")

    if not config["mode"]:
        try:
            config["mode"] = detect_mode(Path(config["input"]))
            logger.info(f"Auto-detected mode: [cyan]{config['mode']}[/]")
        except ConfigValidationError as e:
            logger.error(f"{e}")
            sys.exit(1)

    logger.info(f"Input:  [cyan]{config['input']}[/]")
    logger.info(f"Output: [cyan]{config['output']}[/]")
    logger.info(f"Mode:   [cyan]{config['mode']}[/]")
    logger.info(f"Dithering: [yellow]{config['dithering']['algorithm']}[/]")
    if config["palette"]["id"] == PaletteId.MONOCHROME.value:
        logger.info(f"Palette: [yellow]{config['palette']['id']}[/] (threshold {config['palette']['threshold']})")
    else:
        logger.info(f"Palette: [yellow]{config['palette']['id']}[/]")
    if config["scale"]["percent"] != 100:
        logger.info(f"Scale: [yellow]{config['scale']['percent']}%[/]")

    logger.info("")

    if config["mode"] == "image":
        success = process_single_image(config)
    else:
        success = process_folder(config)

    if success:
        if args.settings:
            record_run(settings, config)
        logger.info("")
        logger.info("[bold green]✓ Processing complete![/]")
        sys.exit(0)
    else:
        logger.error("")
        logger.error("[bold red]✗ Processing failed![/]")
        sys.exit(1)


if __name__ == "__main__":
    main()
