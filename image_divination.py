"""
image_divination.py — Deterministic I-Ching casting seeded by an image.

The pixel buffer is hashed into a 32-bit seed that drives a Mulberry32
generator; the same pixels always give the same reading. Three methods
turn image and generator into six lines:

    image   — band brightness picks yin/yang, the generator picks old/young
    coins   — band brightness weights three coin tosses per line
    yarrow  — 49-stalk division, the image only supplies the seed

Orientation: the image is cut into six horizontal bands from the top row
down, and band i becomes line i+1. Line 1 (bottom of the hexagram) is the
top band of the picture, and bit 0 of the lookup pattern is line 1.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from hexagram_catalog import (
    Hexagram,
    HexagramCatalog,
    HexagramLookupError,
    get_hexagram_by_lines,
)

logger = logging.getLogger(__name__)

# --- Tuning constants ---
MASK32 = 0xFFFFFFFF
HASH_STRIDE = 400            # one sampled byte per 100 RGBA pixels
NEUTRAL_BRIGHTNESS = 128.0   # brightness of an empty band
YANG_THRESHOLD = 128
CHANGING_PROBABILITY = 0.25  # image method: chance a line is old (moving)
HEADS_BASE = 0.3             # coins method: heads probability is 0.3..0.7
HEADS_SPAN = 0.4
YARROW_STALKS = 49
LINE_COUNT = 6

YANG = "yang"
YIN = "yin"

FOCUS_PRIMARY = "primary"
FOCUS_TRANSFORMED = "transformed"
FOCUS_BOTH = "both"


class LineValue(IntEnum):
    """Ritual line values."""
    OLD_YIN = 6      # moving yin, becomes yang
    YOUNG_YANG = 7
    YOUNG_YIN = 8
    OLD_YANG = 9     # moving yang, becomes yin


class DivinationMethod(str, Enum):
    IMAGE = "image"
    COINS = "coins"
    YARROW = "yarrow"


# Yarrow: summed division scores -> line value
YARROW_REMAP: Dict[int, LineValue] = {
    6: LineValue.OLD_YANG,
    7: LineValue.YOUNG_YIN,
    8: LineValue.YOUNG_YIN,
    9: LineValue.OLD_YIN,
}


# --- Data structures ---
@dataclass(frozen=True)
class ImageData:
    """Raw RGBA pixels, row-major, 4 bytes per pixel."""
    width: int
    height: int
    data: bytes

    def __post_init__(self):
        if self.width < 0 or self.height < 0:
            raise ValueError(f"invalid image size {self.width}x{self.height}")
        if not isinstance(self.data, bytes):
            object.__setattr__(self, "data", bytes(self.data))
        expected = self.width * self.height * 4
        if len(self.data) != expected:
            raise ValueError(
                f"RGBA buffer is {len(self.data)} bytes, expected {expected} "
                f"for {self.width}x{self.height}"
            )

    def pixels(self) -> np.ndarray:
        """Read-only (height, width, 4) view of the buffer."""
        return np.frombuffer(self.data, dtype=np.uint8).reshape(self.height, self.width, 4)


@dataclass(frozen=True)
class LineState:
    value: LineValue
    is_changing: bool
    current_type: str  # "yang" | "yin"
    future_type: str


@dataclass
class DivinationResult:
    lines: List[LineState]                   # bottom -> top
    primary_hexagram: Hexagram
    changing_lines: List[int]                # 1-based positions, ascending
    transformed_hexagram: Optional[Hexagram]
    method: DivinationMethod
    seed: Optional[int] = None

    def to_record(self) -> dict:
        """Reduced, JSON-ready shape used for persistence."""
        return {
            "lines": [int(line.value) for line in self.lines],
            "primaryHexagram": self.primary_hexagram.number,
            "changingLines": list(self.changing_lines),
            "transformedHexagram": (
                self.transformed_hexagram.number if self.transformed_hexagram else None
            ),
            "method": self.method.value,
        }


@dataclass
class ReadingInterpretation:
    changing_count: int
    focus: str  # "primary" | "transformed" | "both"
    description: str
    relevant_lines: List[int] = field(default_factory=list)


# --- Line states ---
def create_line_state(value: Union[int, LineValue]) -> LineState:
    value = LineValue(value)
    is_yang = value in (LineValue.YOUNG_YANG, LineValue.OLD_YANG)
    is_changing = value in (LineValue.OLD_YIN, LineValue.OLD_YANG)
    current = YANG if is_yang else YIN
    if is_changing:
        future = YIN if is_yang else YANG
    else:
        future = current
    return LineState(value=value, is_changing=is_changing, current_type=current, future_type=future)


# --- Seeding ---
def _imul(a: int, b: int) -> int:
    return (a * b) & MASK32


def create_seeded_random(seed: int) -> Callable[[], float]:
    """Mulberry32: a repeatable stream of floats in [0, 1) from a 32-bit seed."""
    state = seed & MASK32

    def random() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & MASK32
        t = _imul(state ^ (state >> 15), state | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK32
        return ((t ^ (t >> 14)) & MASK32) / 4294967296

    return random


def hash_image_data(image: ImageData) -> int:
    """
    Fold every HASH_STRIDE-th byte into a 31-multiplier string hash.
    The running value wraps as a signed 32-bit integer; the result is its
    absolute value.
    """
    h = 0
    for byte in image.data[::HASH_STRIDE]:
        h = (h * 31 + byte) & MASK32
    if h & 0x80000000:
        h -= 1 << 32
    return abs(h)


# --- Image analysis ---
def region_brightness(image: ImageData, start_y: int, end_y: int) -> float:
    """Mean luminance (0.299R + 0.587G + 0.114B) of rows [start_y, end_y)."""
    if end_y <= start_y or image.width == 0:
        return NEUTRAL_BRIGHTNESS
    rows = image.pixels()[start_y:end_y, :, :3].astype(np.float64)
    if rows.size == 0:
        return NEUTRAL_BRIGHTNESS
    luminance = 0.299 * rows[..., 0] + 0.587 * rows[..., 1] + 0.114 * rows[..., 2]
    return float(luminance.mean())


def band_bounds(height: int, bands: int = LINE_COUNT) -> List[Tuple[int, int]]:
    """Row ranges of equal horizontal bands; the last one takes the remainder."""
    return [(i * height // bands, (i + 1) * height // bands) for i in range(bands)]


def band_brightness(image: ImageData) -> List[float]:
    return [region_brightness(image, start, end) for start, end in band_bounds(image.height)]


# --- Methods ---
def image_method(image: ImageData, catalog: Optional[HexagramCatalog] = None) -> DivinationResult:
    """Brightness above the midpoint is yang; one draw per line decides old vs young."""
    seed = hash_image_data(image)
    random = create_seeded_random(seed)

    lines: List[LineState] = []
    for brightness in band_brightness(image):
        is_yang = brightness > YANG_THRESHOLD
        is_changing = random() < CHANGING_PROBABILITY
        if is_yang:
            value = LineValue.OLD_YANG if is_changing else LineValue.YOUNG_YANG
        else:
            value = LineValue.OLD_YIN if is_changing else LineValue.YOUNG_YIN
        lines.append(create_line_state(value))

    logger.debug("image method: seed=%d values=%s", seed, [int(l.value) for l in lines])
    return build_divination_result(lines, DivinationMethod.IMAGE, catalog, seed=seed)


def coins_method(image: ImageData, catalog: Optional[HexagramCatalog] = None) -> DivinationResult:
    """Three weighted coins per line; heads = 3, tails = 2, the sum is the line value."""
    seed = hash_image_data(image)
    random = create_seeded_random(seed)

    lines: List[LineState] = []
    for brightness in band_brightness(image):
        heads_probability = HEADS_BASE + (brightness / 255) * HEADS_SPAN
        total = 0
        for _ in range(3):
            total += 3 if random() < heads_probability else 2
        lines.append(create_line_state(total))

    logger.debug("coins method: seed=%d values=%s", seed, [int(l.value) for l in lines])
    return build_divination_result(lines, DivinationMethod.COINS, catalog, seed=seed)


def simulate_yarrow_stalk_division(random: Callable[[], float]) -> LineValue:
    """One line from three divisions of the 49 stalks. Uses three draws."""
    in_hand: List[int] = []
    for _ in range(3):
        pile = YARROW_STALKS - sum(in_hand) - 1
        left = int(random() * (pile - 1)) + 1
        right = pile - left - 1  # one stalk from the right goes between the fingers
        in_hand.append(1 + (left % 4 or 4) + (right % 4 or 4))

    first = 3 if in_hand[0] == 5 else 2
    second = 3 if in_hand[1] == 4 else 2
    third = 3 if in_hand[2] == 4 else 2
    return YARROW_REMAP.get(first + second + third, LineValue.YOUNG_YANG)


def yarrow_method(image: ImageData, catalog: Optional[HexagramCatalog] = None) -> DivinationResult:
    seed = hash_image_data(image)
    random = create_seeded_random(seed)
    lines = [create_line_state(simulate_yarrow_stalk_division(random)) for _ in range(LINE_COUNT)]
    logger.debug("yarrow method: seed=%d values=%s", seed, [int(l.value) for l in lines])
    return build_divination_result(lines, DivinationMethod.YARROW, catalog, seed=seed)


def divine(
    image: ImageData,
    method: Union[str, DivinationMethod],
    catalog: Optional[HexagramCatalog] = None,
) -> DivinationResult:
    """Run the named method."""
    try:
        method = DivinationMethod(method)
    except ValueError:
        raise ValueError(f"Unknown method: {method}") from None

    if method is DivinationMethod.IMAGE:
        return image_method(image, catalog)
    elif method is DivinationMethod.COINS:
        return coins_method(image, catalog)
    else:
        return yarrow_method(image, catalog)


# --- Result building ---
def build_divination_result(
    lines: Sequence[LineState],
    method: DivinationMethod,
    catalog: Optional[HexagramCatalog] = None,
    seed: Optional[int] = None,
) -> DivinationResult:
    if len(lines) != LINE_COUNT:
        raise ValueError(f"a hexagram needs {LINE_COUNT} lines, got {len(lines)}")

    changing = [i + 1 for i, line in enumerate(lines) if line.is_changing]

    primary = get_hexagram_by_lines(lines, False, catalog)
    if primary is None:
        raise HexagramLookupError("Failed to determine primary hexagram")

    transformed = None
    if changing:
        transformed = get_hexagram_by_lines(lines, True, catalog)
        if transformed is None:
            raise HexagramLookupError("Failed to determine transformed hexagram")

    return DivinationResult(
        lines=list(lines),
        primary_hexagram=primary,
        changing_lines=changing,
        transformed_hexagram=transformed,
        method=DivinationMethod(method),
        seed=seed,
    )


def result_from_record(record: dict, catalog: Optional[HexagramCatalog] = None) -> DivinationResult:
    """Rebuild a full result from the reduced record written by `to_record`."""
    lines = [create_line_state(v) for v in record["lines"]]
    result = build_divination_result(lines, DivinationMethod(record["method"]), catalog)
    if result.primary_hexagram.number != record.get("primaryHexagram", result.primary_hexagram.number):
        raise ValueError(
            f"record names hexagram {record['primaryHexagram']} but its lines "
            f"give {result.primary_hexagram.number}"
        )
    return result


# --- Interpretation ---
_DESCRIPTIONS = {
    0: "只看本卦卦辭 (read the primary judgment only)",
    1: "看本卦該爻爻辭 (read the changing line of the primary hexagram)",
    2: "看本卦兩變爻，以上爻為主 (read both changing lines, the upper one leads)",
    3: "看本卦 + 之卦卦辭 (read the judgments of both hexagrams)",
    4: "看之卦兩不變爻，以下爻為主 (read the two stable lines of the transformed hexagram, the lower one leads)",
    5: "看之卦不變爻爻辭 (read the stable line of the transformed hexagram)",
}
_DESCRIPTION_USE = "乾坤看用辭 (read the use-nine / use-six text)"
_DESCRIPTION_ALL_CHANGE = "看之卦卦辭 (read the judgment of the transformed hexagram)"
_DESCRIPTION_FALLBACK = "看本卦卦辭 (read the primary judgment)"


def get_reading_interpretation(result: DivinationResult) -> ReadingInterpretation:
    """Traditional rules: the number of changing lines decides what to read."""
    changing = list(result.changing_lines)
    count = len(changing)
    stable = [pos for pos in range(1, LINE_COUNT + 1) if pos not in changing]

    if count in (0, 3):
        focus = FOCUS_PRIMARY if count == 0 else FOCUS_BOTH
        return ReadingInterpretation(count, focus, _DESCRIPTIONS[count], [])
    if count in (1, 2):
        return ReadingInterpretation(count, FOCUS_PRIMARY, _DESCRIPTIONS[count], changing)
    if count in (4, 5):
        return ReadingInterpretation(count, FOCUS_TRANSFORMED, _DESCRIPTIONS[count], stable)
    if count == 6:
        if result.primary_hexagram.number in (1, 2):
            return ReadingInterpretation(count, FOCUS_PRIMARY, _DESCRIPTION_USE, [])
        return ReadingInterpretation(count, FOCUS_TRANSFORMED, _DESCRIPTION_ALL_CHANGE, [])
    return ReadingInterpretation(count, FOCUS_PRIMARY, _DESCRIPTION_FALLBACK, [])
