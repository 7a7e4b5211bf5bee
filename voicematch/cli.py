"""
VoiceMatch - command-line interface.

Example usage:
    # Compare a practice recording against a reference
    voicematch compare reference.wav attempt.m4a
    voicematch compare --output result.json reference.wav attempt.m4a

    # Run the HTTP API
    voicematch serve --host 0.0.0.0 --port 8000

    # List reference clips in the configured clip directory
    voicematch clips
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

from voicematch import __version__
from voicematch.core.models import AnalysisResult
from voicematch.utils.config import load_config
from voicematch.utils.errors import VoiceMatchError
from voicematch.utils.logging import setup_logging, setup_logging_from_config


def print_result(reference: Path, attempt: Path, result: AnalysisResult) -> None:
    """Print a comparison result to the console."""
    print("\n" + "=" * 60)
    print("VOICEMATCH COMPARISON")
    print("=" * 60)
    print(f"Reference: {reference.name}")
    print(f"Attempt:   {attempt.name}")
    processing_time = result.metadata.get('processing_time')
    if processing_time is not None:
        print(f"Processing Time: {processing_time:.3f}s")
    print("-" * 60)
    print(result.get_summary())
    print("-" * 60)
    print(f"\n{result.feedback}")

    for name, dim in (
        ("Pitch", result.pitch),
        ("Rhythm", result.rhythm),
        ("Pronunciation", result.pronunciation),
    ):
        print(f"\n{name}: {dim.score:.2%}")
        print(f"  {dim.feedback}")


def compare(
    reference: Path,
    attempt: Path,
    config: dict,
    output: Optional[Path] = None,
    verbose: bool = False,
) -> int:
    """
    Compare two local recordings.

    Returns:
        int: Exit code (0 success, 1 failure)
    """
    from voicematch.core.engine import create_analysis_engine

    engine = create_analysis_engine(config)
    try:
        result = engine.analyze_files(reference, attempt)
    except (VoiceMatchError, FileNotFoundError) as e:
        print(f"Error: {e}")
        if verbose:
            import traceback
            traceback.print_exc()
        return 1
    finally:
        engine.shutdown()

    print_result(reference, attempt, result)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, 'w', encoding='utf-8') as f:
            f.write(result.to_json(indent=2))
        print(f"\nResults saved to: {output}")
    return 0


def serve(config: dict, host: Optional[str] = None, port: Optional[int] = None) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from voicematch.api.app import create_app

    server = config.get('server', {})
    app = create_app(config)
    uvicorn.run(
        app,
        host=host or server.get('host', '0.0.0.0'),
        port=port or server.get('port', 8000),
        log_config=None,
    )
    return 0


def list_clips(config: dict) -> int:
    """Print the ids of all stored reference clips."""
    from voicematch.core.clips import create_clip_store

    store = create_clip_store(config.get('clips', {}))
    clip_ids = store.list_clips() if hasattr(store, 'list_clips') else []
    if not clip_ids:
        print("No reference clips found.")
        return 0
    for clip_id in clip_ids:
        print(clip_id)
    print(f"{len(clip_ids)} clip(s) total")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicematch",
        description="Compare spoken recordings for pitch, rhythm and pronunciation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  voicematch compare reference.wav attempt.m4a
  voicematch compare --output result.json reference.wav attempt.m4a
  voicematch serve --port 8000
  voicematch clips
        """
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"VoiceMatch {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    compare_parser = subparsers.add_parser("compare", help="Compare two local recordings")
    compare_parser.add_argument("reference", type=Path, help="Reference recording")
    compare_parser.add_argument("attempt", type=Path, help="Recording to score")
    compare_parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Path to save JSON output"
    )

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Port")

    subparsers.add_parser("clips", help="List stored reference clips")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the voicematch command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load configuration
    config_path = str(args.config) if args.config else None
    try:
        config = load_config(config_path)
    except VoiceMatchError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)

    # Setup logging: the server logs JSON, interactive commands log colored text
    level = "DEBUG" if args.verbose else None
    if args.command == "serve":
        setup_logging_from_config(config, level_override=level)
    else:
        setup_logging(
            level=level or config.get("logging", {}).get("level", "WARNING"),
            log_format="text",
            colored=True,
            console_enabled=True
        )

    if args.command == "compare":
        exit_code = compare(args.reference, args.attempt, config, args.output, args.verbose)
    elif args.command == "serve":
        exit_code = serve(config, args.host, args.port)
    else:
        exit_code = list_clips(config)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
