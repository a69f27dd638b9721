"""
hexagram_catalog.py — The 64 hexagrams: catalog entries, text bundles and lookup.

The catalog is a read-only dataset keyed by King Wen number (1-64). The
built-in entries carry names, symbols and trigrams; judgment and line texts
come from an optional JSON bundle merged over them by number.
"""

from __future__ import annotations
import json
import logging
import unicodedata
from dataclasses import dataclass, replace
from pathlib import Path
from typing import TYPE_CHECKING, Dict, Iterator, Optional, Sequence, Tuple, Union

if TYPE_CHECKING:
    from image_divination import LineState

logger = logging.getLogger(__name__)

HEXAGRAM_COUNT = 64
SYMBOL_BASE = 0x4DC0  # ䷀, the Yijing hexagram block runs to U+4DFF

# Trigram glyph -> (bottom, middle, top), True = yang
TRIGRAM_FIGURES: Dict[str, Tuple[bool, bool, bool]] = {
    "☰": (True, True, True),     # Qian, Heaven
    "☱": (True, True, False),    # Dui, Lake
    "☲": (True, False, True),    # Li, Fire
    "☳": (True, False, False),   # Zhen, Thunder
    "☴": (False, True, True),    # Xun, Wind/Wood
    "☵": (False, True, False),   # Kan, Water
    "☶": (False, False, True),   # Gen, Mountain
    "☷": (False, False, False),  # Kun, Earth
}

TRIGRAM_NAMES = {
    "☰": "Qian (Heaven)", "☱": "Dui (Lake)", "☲": "Li (Fire)", "☳": "Zhen (Thunder)",
    "☴": "Xun (Wind/Wood)", "☵": "Kan (Water)", "☶": "Gen (Mountain)", "☷": "Kun (Earth)",
}

_FIGURE_TRIGRAMS = {figure: glyph for glyph, figure in TRIGRAM_FIGURES.items()}

# number: (chinese, pinyin, english, upper trigram, lower trigram)
_BUILTIN: Dict[int, Tuple[str, str, str, str, str]] = {
    1: ("乾", "qián", "The Creative", "☰", "☰"),
    2: ("坤", "kūn", "The Receptive", "☷", "☷"),
    3: ("屯", "zhūn", "Difficulty at the Beginning", "☵", "☳"),
    4: ("蒙", "méng", "Youthful Folly", "☶", "☵"),
    5: ("需", "xū", "Waiting", "☵", "☰"),
    6: ("訟", "sòng", "Conflict", "☰", "☵"),
    7: ("師", "shī", "The Army", "☷", "☵"),
    8: ("比", "bǐ", "Holding Together", "☵", "☷"),
    9: ("小畜", "xiǎo chù", "Small Taming", "☴", "☰"),
    10: ("履", "lǚ", "Treading", "☰", "☱"),
    11: ("泰", "tài", "Peace", "☷", "☰"),
    12: ("否", "pǐ", "Standstill", "☰", "☷"),
    13: ("同人", "tóng rén", "Fellowship", "☰", "☲"),
    14: ("大有", "dà yǒu", "Great Possession", "☲", "☰"),
    15: ("謙", "qiān", "Modesty", "☷", "☶"),
    16: ("豫", "yù", "Enthusiasm", "☳", "☷"),
    17: ("隨", "suí", "Following", "☱", "☳"),
    18: ("蠱", "gǔ", "Work on the Decayed", "☶", "☴"),
    19: ("臨", "lín", "Approach", "☷", "☱"),
    20: ("觀", "guān", "Contemplation", "☴", "☷"),
    21: ("噬嗑", "shì kè", "Biting Through", "☲", "☳"),
    22: ("賁", "bì", "Grace", "☶", "☲"),
    23: ("剝", "bō", "Splitting Apart", "☶", "☷"),
    24: ("復", "fù", "Return", "☷", "☳"),
    25: ("无妄", "wú wàng", "Innocence", "☰", "☳"),
    26: ("大畜", "dà chù", "Great Taming", "☶", "☰"),
    27: ("頤", "yí", "Nourishment", "☶", "☳"),
    28: ("大過", "dà guò", "Great Exceeding", "☱", "☴"),
    29: ("坎", "kǎn", "The Abysmal", "☵", "☵"),
    30: ("離", "lí", "The Clinging", "☲", "☲"),
    31: ("咸", "xián", "Influence", "☱", "☶"),
    32: ("恆", "héng", "Duration", "☳", "☴"),
    33: ("遯", "dùn", "Retreat", "☰", "☶"),
    34: ("大壯", "dà zhuàng", "Great Power", "☳", "☰"),
    35: ("晉", "jìn", "Progress", "☲", "☷"),
    36: ("明夷", "míng yí", "Darkening of the Light", "☷", "☲"),
    37: ("家人", "jiā rén", "The Family", "☴", "☲"),
    38: ("睽", "kuí", "Opposition", "☲", "☱"),
    39: ("蹇", "jiǎn", "Obstruction", "☵", "☶"),
    40: ("解", "xiè", "Deliverance", "☳", "☵"),
    41: ("損", "sǔn", "Decrease", "☶", "☱"),
    42: ("益", "yì", "Increase", "☴", "☳"),
    43: ("夬", "guài", "Breakthrough", "☱", "☰"),
    44: ("姤", "gòu", "Coming to Meet", "☰", "☴"),
    45: ("萃", "cuì", "Gathering Together", "☱", "☷"),
    46: ("升", "shēng", "Pushing Upward", "☷", "☴"),
    47: ("困", "kùn", "Oppression", "☱", "☵"),
    48: ("井", "jǐng", "The Well", "☵", "☴"),
    49: ("革", "gé", "Revolution", "☱", "☲"),
    50: ("鼎", "dǐng", "The Cauldron", "☲", "☴"),
    51: ("震", "zhèn", "The Arousing", "☳", "☳"),
    52: ("艮", "gèn", "Keeping Still", "☶", "☶"),
    53: ("漸", "jiàn", "Development", "☴", "☶"),
    54: ("歸妹", "guī mèi", "The Marrying Maiden", "☳", "☱"),
    55: ("豐", "fēng", "Abundance", "☳", "☲"),
    56: ("旅", "lǚ", "The Wanderer", "☲", "☶"),
    57: ("巽", "xùn", "The Gentle", "☴", "☴"),
    58: ("兌", "duì", "The Joyous", "☱", "☱"),
    59: ("渙", "huàn", "Dispersion", "☴", "☵"),
    60: ("節", "jié", "Limitation", "☵", "☱"),
    61: ("中孚", "zhōng fú", "Inner Truth", "☴", "☱"),
    62: ("小過", "xiǎo guò", "Small Exceeding", "☳", "☶"),
    63: ("既濟", "jì jì", "After Completion", "☵", "☲"),
    64: ("未濟", "wèi jì", "Before Completion", "☲", "☵"),
}

# King Wen sequence: 6-bit pattern -> hexagram number.
# Bit i is line i+1 (bit 0 = bottom line), yang = 1, yin = 0.
KING_WEN_SEQUENCE: Dict[int, int] = {
    0b111111: 1,  0b000000: 2,  0b100010: 3,  0b010001: 4,
    0b111010: 5,  0b010111: 6,  0b010000: 7,  0b000010: 8,
    0b111011: 9,  0b110111: 10, 0b111000: 11, 0b000111: 12,
    0b101111: 13, 0b111101: 14, 0b001000: 15, 0b000100: 16,
    0b100110: 17, 0b011001: 18, 0b110000: 19, 0b000011: 20,
    0b100101: 21, 0b101001: 22, 0b000001: 23, 0b100000: 24,
    0b100111: 25, 0b111001: 26, 0b100001: 27, 0b011110: 28,
    0b010010: 29, 0b101101: 30, 0b001110: 31, 0b011100: 32,
    0b001111: 33, 0b111100: 34, 0b000101: 35, 0b101000: 36,
    0b101011: 37, 0b110101: 38, 0b001010: 39, 0b010100: 40,
    0b110001: 41, 0b100011: 42, 0b111110: 43, 0b011111: 44,
    0b000110: 45, 0b011000: 46, 0b010110: 47, 0b011010: 48,
    0b101110: 49, 0b011101: 50, 0b100100: 51, 0b001001: 52,
    0b001011: 53, 0b110100: 54, 0b101100: 55, 0b001101: 56,
    0b011011: 57, 0b110110: 58, 0b010011: 59, 0b110010: 60,
    0b110011: 61, 0b001100: 62, 0b101010: 63, 0b010101: 64,
}

_POSITION_NUMERALS = "二三四五"


class HexagramLookupError(RuntimeError):
    """No hexagram for a computed line pattern; the catalog or table is incomplete."""


# --- Data structures ---
@dataclass(frozen=True)
class HexagramName:
    chinese: str
    pinyin: str
    english: str


@dataclass(frozen=True)
class HexagramText:
    """A classical text with its modern rendering."""
    classical: str = ""
    modern: str = ""


@dataclass(frozen=True)
class HexagramLine:
    position: int  # 1-6, bottom to top
    name: str      # 初九, 六二, ...
    classical: str = ""
    modern: str = ""


@dataclass(frozen=True)
class HexagramExtra:
    """The use-nine / use-six text carried only by Qian and Kun."""
    name: str
    classical: str = ""
    modern: str = ""


@dataclass(frozen=True)
class Hexagram:
    """Immutable catalog entry."""
    number: int
    symbol: str
    name: HexagramName
    slug: str
    upper: str  # trigram glyph
    lower: str
    judgment: HexagramText
    lines: Tuple[HexagramLine, ...]
    extra: Optional[HexagramExtra] = None

    @property
    def figure(self) -> Tuple[bool, ...]:
        """Six yang flags, bottom to top, read from the trigram glyphs."""
        return TRIGRAM_FIGURES[self.lower] + TRIGRAM_FIGURES[self.upper]

    def line(self, position: int) -> HexagramLine:
        return self.lines[position - 1]


# --- Catalog construction ---
def line_name(position: int, is_yang: bool) -> str:
    """Traditional line label: 初九 / 六二 / ... / 上六."""
    digit = "九" if is_yang else "六"
    if position == 1:
        return "初" + digit
    if position == 6:
        return "上" + digit
    return digit + _POSITION_NUMERALS[position - 2]


def trigram_from_figure(figure: Sequence[bool]) -> str:
    """Trigram glyph for three yang flags, bottom to top."""
    return _FIGURE_TRIGRAMS[tuple(bool(b) for b in figure)]


def _slug(pinyin: str, number: int) -> str:
    plain = unicodedata.normalize("NFD", pinyin)
    plain = "".join(c for c in plain if not unicodedata.combining(c))
    return plain.replace(" ", "").lower() + str(number)


def _builtin_entry(number: int) -> Hexagram:
    chinese, pinyin, english, upper, lower = _BUILTIN[number]
    figure = TRIGRAM_FIGURES[lower] + TRIGRAM_FIGURES[upper]
    lines = tuple(
        HexagramLine(position=pos, name=line_name(pos, figure[pos - 1]))
        for pos in range(1, 7)
    )
    extra = None
    if number == 1:
        extra = HexagramExtra(name="用九")
    elif number == 2:
        extra = HexagramExtra(name="用六")
    return Hexagram(
        number=number,
        symbol=chr(SYMBOL_BASE + number - 1),
        name=HexagramName(chinese, pinyin, english),
        slug=_slug(pinyin, number),
        upper=upper,
        lower=lower,
        judgment=HexagramText(),
        lines=lines,
        extra=extra,
    )


def _merge_entry(base: Hexagram, raw: dict) -> Hexagram:
    """Overlay one bundle record on a built-in entry. Missing keys keep the built-in value."""
    name = raw.get("name") or {}
    trigrams = raw.get("trigrams") or {}
    judgment = raw.get("judgment") or {}

    lines = list(base.lines)
    for raw_line in raw.get("lines") or []:
        pos = int(raw_line["position"])
        if not 1 <= pos <= 6:
            raise ValueError(f"hexagram {base.number}: line position {pos} out of range")
        old = lines[pos - 1]
        lines[pos - 1] = HexagramLine(
            position=pos,
            name=raw_line.get("name") or old.name,
            classical=raw_line.get("classical", old.classical),
            modern=raw_line.get("modern", old.modern),
        )

    extra = base.extra
    raw_extra = raw.get("extra")
    if raw_extra:
        extra = HexagramExtra(
            name=raw_extra.get("name") or (extra.name if extra else ""),
            classical=raw_extra.get("classical", ""),
            modern=raw_extra.get("modern", ""),
        )

    return replace(
        base,
        symbol=raw.get("symbol") or base.symbol,
        name=HexagramName(
            chinese=name.get("chinese") or base.name.chinese,
            pinyin=name.get("pinyin") or base.name.pinyin,
            english=name.get("english") or base.name.english,
        ),
        slug=raw.get("slug") or base.slug,
        upper=trigrams.get("upper") or base.upper,
        lower=trigrams.get("lower") or base.lower,
        judgment=HexagramText(
            classical=judgment.get("classical", base.judgment.classical),
            modern=judgment.get("modern", base.judgment.modern),
        ),
        lines=tuple(lines),
        extra=extra,
    )


class HexagramCatalog:
    """Read-only set of the 64 hexagrams, keyed by number."""

    def __init__(self, entries: Sequence[Hexagram], version: int = 1):
        self.version = version
        self._by_number: Dict[int, Hexagram] = {h.number: h for h in entries}

    @classmethod
    def builtin(cls) -> "HexagramCatalog":
        return cls([_builtin_entry(n) for n in range(1, HEXAGRAM_COUNT + 1)])

    @classmethod
    def from_bundle(cls, bundle: dict) -> "HexagramCatalog":
        """Merge a parsed JSON bundle over the built-in entries."""
        base = {n: _builtin_entry(n) for n in range(1, HEXAGRAM_COUNT + 1)}
        for raw in bundle.get("hexagrams", []):
            number = int(raw["number"])
            if number not in base:
                raise ValueError(f"bundle entry has invalid hexagram number {number}")
            base[number] = _merge_entry(base[number], raw)
        logger.debug("Merged %d bundle entries", len(bundle.get("hexagrams", [])))
        return cls(list(base.values()), version=int(bundle.get("version", 1)))

    def get(self, number: int) -> Optional[Hexagram]:
        return self._by_number.get(number)

    def __len__(self) -> int:
        return len(self._by_number)

    def __iter__(self) -> Iterator[Hexagram]:
        for number in sorted(self._by_number):
            yield self._by_number[number]


def load_catalog(path: Optional[Union[str, Path]] = None) -> HexagramCatalog:
    """Load the catalog, optionally merging a JSON text bundle from `path`."""
    if path is None:
        return DEFAULT_CATALOG
    with open(path, "r", encoding="utf-8") as f:
        bundle = json.load(f)
    logger.info("Loaded hexagram bundle %s", path)
    return HexagramCatalog.from_bundle(bundle)


DEFAULT_CATALOG = HexagramCatalog.builtin()


# --- Lookup ---
def get_hexagram(number: int, catalog: Optional[HexagramCatalog] = None) -> Optional[Hexagram]:
    """Look up a hexagram by number; None outside 1-64."""
    if number < 1 or number > HEXAGRAM_COUNT:
        return None
    return (catalog if catalog is not None else DEFAULT_CATALOG).get(number)


def lines_to_binary(lines: Sequence["LineState"], use_transformed: bool = False) -> int:
    binary = 0
    for i, line in enumerate(lines[:6]):
        line_type = line.future_type if use_transformed else line.current_type
        if line_type == "yang":
            binary |= 1 << i
    return binary


def get_hexagram_by_lines(
    lines: Sequence["LineState"],
    use_transformed: bool = False,
    catalog: Optional[HexagramCatalog] = None,
) -> Optional[Hexagram]:
    """Resolve six line states (current or future types) to a hexagram."""
    number = KING_WEN_SEQUENCE.get(lines_to_binary(lines, use_transformed))
    return get_hexagram(number, catalog) if number else None

