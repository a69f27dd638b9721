#!/usr/bin/env python3
# gif_delays.py — Report a GIF's size, frame count and per-frame delays.
# Usage: gif-delays <path-to-gif>

from __future__ import annotations
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from gif_decoder import GifError, ParsedGif, parse_gif

console = Console()


def unique_delays(gif: ParsedGif) -> List[int]:
    """Distinct frame delays in order of first appearance."""
    seen: List[int] = []
    for frame in gif.frames:
        if frame.delay_ms not in seen:
            seen.append(frame.delay_ms)
    return seen


def print_report(path: Path, gif: ParsedGif):
    console.print(f"[bold]GIF:[/bold] {path}")
    console.print(f"[dim]Dimensions:[/dim] {gif.width}x{gif.height}")
    console.print(f"[dim]Total frames:[/dim] {len(gif.frames)}")

    t = Table(title="Frame delays")
    t.add_column("Frame", justify="right", style="cyan", no_wrap=True)
    t.add_column("Delay (ms)", justify="right", style="white")
    for i, frame in enumerate(gif.frames):
        t.add_row(str(i), str(frame.delay_ms))
    console.print(t)

    console.print(f"Unique delays: {', '.join(f'{d}ms' for d in unique_delays(gif))}")
    console.print(f"Total duration: {gif.duration_ms}ms")


def main(argv: Optional[List[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Show frame delays of a GIF.")
    p.add_argument("gif", help="Path to the GIF file.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    args = p.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    path = Path(args.gif)
    try:
        gif = parse_gif(path.read_bytes())
    except (GifError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_report(path, gif)
    return 0


if __name__ == "__main__":
    sys.exit(main())
