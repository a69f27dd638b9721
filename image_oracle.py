#!/usr/bin/env python3
# image_oracle.py — Deterministic I-Ching cast from an image file.
# The same picture always gives the same reading; animated GIFs are decoded
# frame by frame and --frame picks which one to read.

from __future__ import annotations
import argparse
import io
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from PIL import Image
from rich.console import Console
from rich.table import Table

from gif_decoder import GifError, is_animated_gif, parse_gif
from hexagram_catalog import (
    DEFAULT_CATALOG,
    TRIGRAM_NAMES,
    Hexagram,
    HexagramCatalog,
    load_catalog,
    trigram_from_figure,
)
from image_divination import (
    FOCUS_BOTH,
    FOCUS_TRANSFORMED,
    DivinationMethod,
    DivinationResult,
    ImageData,
    ReadingInterpretation,
    divine,
    get_reading_interpretation,
)

logger = logging.getLogger(__name__)
console = Console()


def load_image(path: Path, frame: int = 0) -> ImageData:
    """Decode an image file to RGBA. Animated GIFs go through our own decoder."""
    raw = path.read_bytes()
    if is_animated_gif(raw):
        gif = parse_gif(raw)
        if not 0 <= frame < len(gif.frames):
            raise ValueError(f"frame {frame} out of range, {path.name} has {len(gif.frames)} frames")
        logger.info("Using frame %d of %d from %s", frame, len(gif.frames), path)
        return ImageData(gif.width, gif.height, gif.frames[frame].pixels)

    with Image.open(io.BytesIO(raw)) as img:
        rgba = img.convert("RGBA")
        return ImageData(rgba.width, rgba.height, rgba.tobytes())


# --- Display ---
def cast_figure(result: DivinationResult, transformed: bool = False) -> Tuple[bool, ...]:
    """Yang flags of the cast lines, bottom to top."""
    return tuple(
        (line.future_type if transformed else line.current_type) == "yang"
        for line in result.lines
    )


def trigrams_label(figure: Tuple[bool, ...]) -> str:
    upper = trigram_from_figure(figure[3:])
    lower = trigram_from_figure(figure[:3])
    return f"{TRIGRAM_NAMES[upper]} over {TRIGRAM_NAMES[lower]}"


def lines_bar(result: DivinationResult, transformed: bool = False) -> str:
    marks = []
    for line, is_yang in zip(result.lines, cast_figure(result, transformed)):
        bar = "—" if is_yang else "– –"
        if line.is_changing and not transformed:
            bar += "*"
        marks.append(bar)
    return " ".join(marks)


def safe(s: str) -> str:
    return s if s else "—"


def table_for(title: str, hexagram: Hexagram, figure: Optional[Tuple[bool, ...]] = None) -> Table:
    """Hexagram summary; trigrams come from `figure` when given, else from the catalog."""
    t = Table(title=title)
    t.add_column("Hex #", justify="right", style="cyan", no_wrap=True)
    t.add_column("Symbol", justify="center", no_wrap=True)
    t.add_column("Name", style="bold white")
    t.add_column("Upper/Lower", style="magenta")
    t.add_column("Judgment", style="white")
    t.add_row(
        str(hexagram.number),
        hexagram.symbol,
        f"{hexagram.name.chinese} {hexagram.name.pinyin} / {hexagram.name.english}",
        trigrams_label(figure or hexagram.figure),
        safe(hexagram.judgment.classical),
    )
    return t


def print_interpretation(result: DivinationResult, interp: ReadingInterpretation):
    console.print(f"[bold]Reading focus:[/bold] {interp.focus} — {interp.description}")

    source = result.primary_hexagram
    if interp.focus == FOCUS_TRANSFORMED and result.transformed_hexagram:
        source = result.transformed_hexagram

    for pos in interp.relevant_lines:
        line = source.line(pos)
        console.print(f"  {line.name} (line {pos}): {safe(line.classical)}")
        if line.modern:
            console.print(f"    [dim]{line.modern}[/dim]")

    if interp.changing_count == 6 and source.extra:
        console.print(f"  {source.extra.name}: {safe(source.extra.classical)}")
    if interp.focus == FOCUS_BOTH and result.transformed_hexagram:
        console.print(f"  {result.transformed_hexagram.name.chinese}: "
                      f"{safe(result.transformed_hexagram.judgment.classical)}")


def print_result(result: DivinationResult, image_name: str, show_lines: bool):
    seed = f"{result.seed:08x}" if result.seed is not None else "—"
    console.rule(f"[bold magenta]I-Ching Cast • {result.method.value} • {seed}")
    console.print(f"[dim]Image:[/dim] {image_name}")
    console.print(table_for("Primary Hexagram", result.primary_hexagram, cast_figure(result)))
    console.print(f"Lines (bottom→top): {lines_bar(result)}")
    if show_lines:
        console.print(f"Values (bottom→top): {' '.join(str(int(l.value)) for l in result.lines)}")

    if result.changing_lines:
        moved = ", ".join(str(p) for p in result.changing_lines)
        console.print(f"[yellow]Changing lines:[/yellow] {moved}")
        if result.transformed_hexagram:
            console.print(table_for("Transformed Hexagram", result.transformed_hexagram,
                                    cast_figure(result, transformed=True)))
            console.print(f"Lines (bottom→top): {lines_bar(result, transformed=True)}")
    else:
        console.print("[dim]No changing lines.[/dim]")

    print_interpretation(result, get_reading_interpretation(result))


def autosave(path: str, payload: dict):
    """Write the reading as JSON, or append one line when the path ends in .jsonl."""
    if path.lower().endswith(".jsonl"):
        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, ensure_ascii=False) + "\n")
    else:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Deterministic I-Ching cast seeded by an image.",
        formatter_class=argparse.RawTextHelpFormatter
    )
    p.add_argument("image", help="Image file (PNG, JPEG, GIF, ...).")
    p.add_argument("-m", "--method", choices=[m.value for m in DivinationMethod], default="image",
                   help="image: band brightness\ncoins: weighted coin tosses\nyarrow: 49-stalk division")
    p.add_argument("--frame", type=int, default=0, help="Frame index for animated GIFs (default 0).")
    p.add_argument("--bundle", help="Path to JSON bundle with hexagram texts (optional).")
    p.add_argument("--show-lines", action="store_true", help="Also print raw line values (6/7/8/9).")
    p.add_argument("--autosave", help="Autosave reading JSON to this file (or .jsonl to append).")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return p


def cast(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    catalog: HexagramCatalog = DEFAULT_CATALOG
    if args.bundle:
        try:
            catalog = load_catalog(args.bundle)
        except (OSError, ValueError, KeyError) as e:
            print(f"Warning: failed to load bundle: {e}", file=sys.stderr)

    path = Path(args.image)
    try:
        with console.status("[bold cyan]Reading the image…[/bold cyan]", spinner="dots"):
            image = load_image(path, args.frame)
            result = divine(image, args.method, catalog)
    except (GifError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print_result(result, f"{path.name} ({image.width}x{image.height})", show_lines=args.show_lines)

    if args.autosave:
        payload = {
            "timestamp_utc": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "image": path.name,
            **result.to_record(),
        }
        try:
            autosave(args.autosave, payload)
        except OSError as e:
            print(f"Warning: failed to autosave: {e}", file=sys.stderr)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return cast(args)
    except KeyboardInterrupt:
        print("\nCanceled.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
