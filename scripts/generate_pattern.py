#!/usr/bin/env python3
"""Generate a string-art pattern from an image.

Writes four files into the output directory:
    <name>_pattern.yaml, <name>_instructions.txt,
    <name>_instructions.pdf, <name>_preview.png

Parameter precedence: config defaults < --tier preset < explicit flags.

Usage:
    # Defaults (200 pegs, 3000 chords, circular frame)
    python scripts/generate_pattern.py photo.jpg --output out/

    # Premium kit on a square frame
    python scripts/generate_pattern.py photo.jpg --output out/ --tier premium --shape square

    # Explicit settings, JSON logs to a file
    python scripts/generate_pattern.py photo.png -o out/ --pegs 180 --chords 2500 \\
        --log-file logs/generate.log --json-logs
"""
import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.string_art import export_pattern, synthesize
from src.utils.errors import ImageDecodeError, InvalidParameterError
from src.utils.logging_config import get_logger, install_excepthook, push_context, setup_logging
from src.utils.validators import StringArtConfigV1, load_synthesis_config

DEFAULT_CONFIG = Path(__file__).parent.parent / "configs" / "string_art_v1.yaml"

logger = get_logger("generate_pattern")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a string-art pattern (peg sequence, preview, instructions)",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Tiers (configs/string_art_v1.yaml):
  starter   150 pegs, 2000 chords
  standard  200 pegs, 3000 chords
  premium   250 pegs, 4000 chords

Exit codes:
  0  pattern written
  1  unreadable image or invalid parameters
""",
    )
    parser.add_argument("image", type=Path, help="Source image (JPEG, PNG or WEBP)")
    parser.add_argument("--output", "-o", type=Path, required=True, help="Output directory")
    parser.add_argument("--name", type=str, default=None,
                        help="Output file prefix (default: image file stem)")

    # Synthesis parameters
    parser.add_argument("--tier", type=str, default=None, help="Kit preset from the config")
    parser.add_argument("--pegs", type=int, default=None, help="Number of pegs")
    parser.add_argument("--chords", type=int, default=None, help="Maximum number of chords")
    parser.add_argument("--shape", type=str, default=None,
                        help="Frame shape: circle or rectangle (alias: square)")
    parser.add_argument("--size", type=int, default=None, help="Working image side in pixels")
    parser.add_argument("--ink-weight", type=float, default=None,
                        help="Darkening per chord (0-255)")
    parser.add_argument("--min-separation", type=int, default=None,
                        help="Minimum ring distance between consecutive pegs")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG,
                        help=f"Config YAML (default: {DEFAULT_CONFIG.name})")
    parser.add_argument("--no-pdf", action="store_true", help="Skip the PDF instruction sheet")

    # Logging
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    return parser


def load_config(path: Path) -> StringArtConfigV1:
    """Load the config file, falling back to built-in defaults if the bundled one is absent."""
    if path == DEFAULT_CONFIG and not path.exists():
        logger.warning(f"Default config {path} not found; using built-in defaults")
        return StringArtConfigV1()
    return load_synthesis_config(path)


def generate_main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint; returns the process exit code."""
    args = build_parser().parse_args(argv)

    setup_logging(
        log_level="DEBUG" if args.verbose else "INFO",
        log_file=args.log_file,
        json=args.json_logs,
        context={"app": "generate_pattern"},
    )
    install_excepthook()
    if args.tier:
        push_context(tier=args.tier)

    try:
        cfg = load_config(args.config)
        params = cfg.parameters_for(
            tier=args.tier,
            peg_count=args.pegs,
            max_chords=args.chords,
            frame_shape=args.shape,
            working_size=args.size,
            ink_weight_per_chord=args.ink_weight,
            min_loop_separation=args.min_separation,
        )
        result = synthesize(args.image, params, limits=cfg.image)
    except (FileNotFoundError, ImageDecodeError, InvalidParameterError) as e:
        logger.error(str(e))
        return 1

    settings = cfg.export
    if args.no_pdf:
        settings = settings.model_copy(update={"write_pdf": False})

    name = args.name or args.image.stem
    paths = export_pattern(result, args.output, name=name, settings=settings, tier=args.tier)

    logger.info(
        f"{result.stats.chords_drawn} chords on {params.peg_count} pegs "
        f"(stop={result.stats.stop_reason}), fingerprint {result.fingerprint()[:12]}"
    )
    for kind, path in paths.items():
        logger.info(f"  {kind}: {path}")
    return 0


if __name__ == "__main__":
    sys.exit(generate_main())
