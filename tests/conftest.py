"""
Shared builders: banded RGBA images, a reference LZW encoder and a
minimal GIF writer for synthetic animations.
"""

import struct
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import pytest

from image_divination import ImageData

Color = Tuple[int, int, int]

PALETTE: List[Color] = [
    (255, 0, 0),      # 0 red
    (0, 255, 0),      # 1 green
    (0, 0, 255),      # 2 blue
    (255, 255, 255),  # 3 white
]


def make_image(width: int, height: int, pattern: Sequence[int]) -> ImageData:
    """Gray image in six horizontal bands, band i filled with pattern[i]."""
    band_height = height / 6
    data = bytearray()
    for y in range(height):
        value = pattern[min(int(y / band_height), 5)]
        data += bytes((value, value, value, 255)) * width
    return ImageData(width, height, bytes(data))


def lzw_encode(indices: Sequence[int], min_code_size: int, clear_when_full: bool = False) -> bytes:
    """
    Plain GIF LZW encoder with a leading clear code and a trailing end code.
    When the 4096-entry table fills it either keeps coding with the frozen
    table or, with `clear_when_full`, emits a clear code and starts over.
    """
    clear_code = 1 << min_code_size
    end_code = clear_code + 1

    def fresh_table():
        return {bytes((i,)): i for i in range(clear_code)}

    code_size = min_code_size + 1
    table = fresh_table()
    next_code = end_code + 1

    out = bytearray()
    bits = 0
    bit_count = 0

    def emit(code):
        nonlocal bits, bit_count
        bits |= code << bit_count
        bit_count += code_size
        while bit_count >= 8:
            out.append(bits & 0xFF)
            bits >>= 8
            bit_count -= 8

    emit(clear_code)
    prefix = b""
    for index in indices:
        candidate = prefix + bytes((index,))
        if candidate in table:
            prefix = candidate
            continue
        emit(table[prefix])
        if next_code < 4096:
            table[candidate] = next_code
            next_code += 1
            if next_code == 4096 and clear_when_full:
                emit(clear_code)
                table = fresh_table()
                next_code = end_code + 1
                code_size = min_code_size + 1
            elif next_code > (1 << code_size) and code_size < 12:
                code_size += 1
        prefix = bytes((index,))
    if prefix:
        emit(table[prefix])
    emit(end_code)
    if bit_count:
        out.append(bits & 0xFF)
    return bytes(out)


@dataclass
class FrameSpec:
    indices: Sequence[int]
    width: int
    height: int
    left: int = 0
    top: int = 0
    delay_cs: Optional[int] = 10  # None = no graphic control extension
    disposal: int = 0
    transparent: Optional[int] = None
    interlaced: bool = False
    palette: Optional[Sequence[Color]] = None  # local color table


def _table_bits(palette: Sequence[Color]) -> int:
    """Size field n such that the table holds 2 ** (n + 1) entries."""
    n = 0
    while (1 << (n + 1)) < len(palette):
        n += 1
    return n


def _table_bytes(palette: Sequence[Color]) -> bytes:
    entries = 1 << (_table_bits(palette) + 1)
    padded = list(palette) + [(0, 0, 0)] * (entries - len(palette))
    return b"".join(bytes(c) for c in padded)


def _sub_blocks(data: bytes) -> bytes:
    out = bytearray()
    for i in range(0, len(data), 255):
        chunk = data[i:i + 255]
        out.append(len(chunk))
        out += chunk
    out.append(0)
    return bytes(out)


def build_gif(width: int, height: int, frames: Sequence[FrameSpec],
              palette: Optional[Sequence[Color]] = PALETTE) -> bytes:
    out = bytearray(b"GIF89a")
    packed = 0
    if palette:
        packed = 0x80 | 0x70 | _table_bits(palette)
    out += struct.pack("<HHBBB", width, height, packed, 0, 0)
    if palette:
        out += _table_bytes(palette)

    for frame in frames:
        if frame.delay_cs is not None:
            gc_packed = (frame.disposal & 0x07) << 2
            if frame.transparent is not None:
                gc_packed |= 0x01
            out += struct.pack("<BBBBHBB", 0x21, 0xF9, 4, gc_packed, frame.delay_cs,
                               frame.transparent or 0, 0)

        table = frame.palette or palette or PALETTE
        image_packed = 0x40 if frame.interlaced else 0
        if frame.palette:
            image_packed |= 0x80 | _table_bits(frame.palette)
        out += struct.pack("<BHHHHB", 0x2C, frame.left, frame.top,
                           frame.width, frame.height, image_packed)
        if frame.palette:
            out += _table_bytes(frame.palette)

        rows = [list(frame.indices[y * frame.width:(y + 1) * frame.width])
                for y in range(frame.height)]
        if frame.interlaced:
            order = [y for start, step in ((0, 8), (4, 8), (2, 4), (1, 2))
                     for y in range(start, frame.height, step)]
            rows = [rows[y] for y in order]
        stored = [i for row in rows for i in row]

        min_code_size = max(2, _table_bits(table) + 1)
        out.append(min_code_size)
        out += _sub_blocks(lzw_encode(stored, min_code_size))

    out.append(0x3B)
    return bytes(out)


def rgba_at(pixels: bytes, width: int, x: int, y: int) -> Tuple[int, int, int, int]:
    offset = (y * width + x) * 4
    return tuple(pixels[offset:offset + 4])


@pytest.fixture
def two_frame_gif() -> bytes:
    return build_gif(2, 2, [
        FrameSpec([0, 0, 0, 0], 2, 2, delay_cs=10),
        FrameSpec([1, 1, 1, 1], 2, 2, delay_cs=20),
    ])
