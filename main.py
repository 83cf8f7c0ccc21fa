"""
Media Side-Channel — CLI Entry Point

Usage:
    python main.py probe movie.mkv
    python main.py extract movie.mkv --track 1 -o movie.eng.srt
    python main.py thumbnail movie.mkv --at 300000 -o preview.png
    python main.py cues movie.srt --at 65000
"""

import sys
import argparse
import logging
from pathlib import Path

from config import load_config
from sidechannel.cues import parse_file
from sidechannel.errors import ErrorKind
from sidechannel.extractor import TrackExtractor
from sidechannel.probe import (
    FFmpegStderrStrategy,
    FFprobeStrategy,
    TrackProber,
)
from sidechannel.session import MediaSideChannel
from sidechannel.srt_writer import SRTWriter
from sidechannel.thumbnails import ThumbnailService
from sidechannel.timeline import find_active
from sidechannel.tools import ToolRunner, locate_tools, probe_duration_ms


def setup_logging(level: str = "INFO", log_file: str = None):
    """Configure logging for the application."""
    log_format = (
        "%(asctime)s | %(levelname)-7s | %(name)-20s | %(message)s"
    )
    date_format = "%H:%M:%S"

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=log_format,
        datefmt=date_format,
        handlers=handlers
    )

    # PIL logs every plugin it imports at DEBUG
    logging.getLogger("PIL").setLevel(logging.INFO)


def print_banner():
    """Print the application banner."""
    banner = """
==========================================================
          Media Side-Channel

  Seek Previews  +  Embedded Subtitle Tracks
  Powered by FFmpeg
==========================================================
"""
    print(banner)


# ── Sub-commands ────────────────────────────────────────────────


def cmd_probe(args, config, tools, runner) -> int:
    prober = TrackProber(
        [FFprobeStrategy(tools.ffprobe, runner), FFmpegStderrStrategy(tools.ffmpeg, runner)],
        timeout=config.subtitles.probe_timeout,
    )
    result = prober.probe_result(str(args.video))
    if not result.is_ok:
        print(f"  [ERROR] Probe failed ({result.error.value}): {result.detail}")
        return 1

    labels = MediaSideChannel.track_menu_labels(result.value)
    print(f"  Subtitle tracks in {args.video.name}:")
    if not result.value:
        print(f"    {labels[0]}")
    for track, label in zip(result.value, labels):
        print(f"    [{track.stream_index}] {label}  "
              f"(stream #{track.global_index}, {track.codec or '?'})")
    return 0


def cmd_extract(args, config, tools, runner) -> int:
    extractor = TrackExtractor(
        tools.ffmpeg, runner, timeout=config.subtitles.extract_timeout
    )
    result = extractor.extract_result(str(args.video), args.track)
    if not result.is_ok:
        print(f"  [ERROR] Extraction failed ({result.error.value}): {result.detail}")
        return 1

    writer = SRTWriter()
    output_path = args.output or args.video.with_suffix(f".track{args.track}.srt")
    writer.write(result.value, output_path)
    print(f"\n  [OK] {len(result.value)} cues saved to: {output_path}\n")
    print(writer.write_preview(result.value))
    return 0


def cmd_thumbnail(args, config, tools, runner) -> int:
    service = ThumbnailService(tools.ffmpeg, runner, config.thumbnails)
    try:
        duration = args.duration
        if duration is None and tools.ffprobe:
            duration = probe_duration_ms(
                tools.ffprobe, str(args.video), runner,
                timeout=config.subtitles.probe_timeout,
            )
        service.set_video(str(args.video), duration or 0)

        result = service.get_thumbnail_result(args.at)
        if not result.is_ok:
            if result.error is ErrorKind.NOT_READY:
                print("  [TIP] Pass --duration if ffprobe cannot read the file.")
            print(f"  [ERROR] No thumbnail ({result.error.value}): {result.detail}")
            return 1

        thumb = result.value
        output_path = args.output or Path(f"{args.video.stem}_{thumb.bucket_key}.png")
        thumb.to_pil().save(output_path)
        print(f"  [OK] {thumb.width}x{thumb.height} frame at "
              f"{thumb.bucket_key}ms saved to: {output_path}")
        return 0
    finally:
        service.dispose()


def cmd_cues(args, config, tools, runner) -> int:
    cues = parse_file(args.subtitles)
    if not cues:
        print(f"  [ERROR] No cues found in {args.subtitles}")
        return 1
    if args.at is None:
        print(SRTWriter().write_preview(cues, max_entries=args.limit))
        return 0

    cue = find_active(cues, args.at)
    if cue is None:
        print(f"  (no cue at {SRTWriter.format_timestamp(args.at)})")
    else:
        print(f"  #{cue.index}  {SRTWriter.format_timestamp(cue.start_ms)} --> "
              f"{SRTWriter.format_timestamp(cue.end_ms)}")
        print(f"  {cue.text}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Media Side-Channel — seek thumbnails and embedded "
                    "subtitle tracks via FFmpeg.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py probe movie.mkv                        # List subtitle tracks
  python main.py extract movie.mkv -t 1 -o eng.srt      # Save track 1 as SRT
  python main.py thumbnail movie.mkv --at 300000        # Preview frame at 5:00
  python main.py cues movie.srt --at 65000              # Cue shown at 1:05
        """
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to custom config.yaml file"
    )
    parser.add_argument(
        "--ffmpeg",
        default=None,
        help="Path to ffmpeg executable (default: auto-detect)"
    )
    parser.add_argument(
        "--ffprobe",
        default=None,
        help="Path to ffprobe executable (default: auto-detect)"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Probe timeout in seconds (default: 10)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress the banner and informational logging"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("probe", help="List embedded subtitle tracks")
    p.add_argument("video", type=Path)
    p.set_defaults(func=cmd_probe)

    p = sub.add_parser("extract", help="Extract an embedded subtitle track to SRT")
    p.add_argument("video", type=Path)
    p.add_argument("-t", "--track", type=int, default=0,
                   help="Zero-based subtitle track index (default: 0)")
    p.add_argument("-o", "--output", type=Path, default=None,
                   help="Output SRT path (default: <video>.track<N>.srt)")
    p.set_defaults(func=cmd_extract)

    p = sub.add_parser("thumbnail", help="Render the seek preview for a timestamp")
    p.add_argument("video", type=Path)
    p.add_argument("--at", type=int, required=True, help="Timestamp in milliseconds")
    p.add_argument("--duration", type=int, default=None,
                   help="Video duration in ms (default: ask ffprobe)")
    p.add_argument("-o", "--output", type=Path, default=None,
                   help="Output image path (default: <video>_<bucket>.png)")
    p.set_defaults(func=cmd_thumbnail)

    p = sub.add_parser("cues", help="Parse a subtitle file and look up cues")
    p.add_argument("subtitles", type=Path)
    p.add_argument("--at", type=int, default=None,
                   help="Show the cue active at this timestamp (ms)")
    p.add_argument("--limit", type=int, default=10,
                   help="Entries to preview when --at is not given")
    p.set_defaults(func=cmd_cues)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # ── Validate input ──
    source = getattr(args, "video", None) or getattr(args, "subtitles", None)
    if source is not None and not source.exists():
        print(f"Error: File not found: {source}")
        return 1

    # ── Load config ──
    config = load_config(args.config)
    config.update_from_args(args)

    # ── Setup logging ──
    log_level = "DEBUG" if args.verbose else ("WARNING" if args.quiet else config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.file)

    if not args.quiet:
        print_banner()

    try:
        runner = ToolRunner()
        if args.command == "cues":
            tools = None
        else:
            tools = locate_tools(
                runner,
                ffmpeg_path=config.tools.ffmpeg_path,
                ffprobe_path=config.tools.ffprobe_path,
                validate_timeout=config.tools.validate_timeout,
            )
            if not tools.ffmpeg_available and not tools.ffprobe_available:
                print("\n  [ERROR] Neither ffmpeg nor ffprobe was found.")
                print("  [TIP] Install FFmpeg or pass --ffmpeg /path/to/ffmpeg")
                return 1
        return args.func(args, config, tools, runner)

    except KeyboardInterrupt:
        print("\n\n  [WARN] Interrupted by user.")
        return 130
    except OSError as e:
        print(f"\n  [ERROR] File error: {e}")
        return 1
    except Exception as e:
        logging.exception("Unexpected error")
        print(f"\n  [ERROR] Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
