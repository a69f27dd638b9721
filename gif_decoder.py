"""
gif_decoder.py — Decode (animated) GIF bytes into full RGBA frames.

Pipeline: block walker -> LZW decompressor -> deinterlacer -> compositor.
The decoder is tolerant the way browsers are: a bad signature is fatal,
while truncated or corrupt data keeps whatever decoded before the damage.
"""

from __future__ import annotations
import enum
import logging
import struct
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]

DEFAULT_DELAY_MS = 100
MAX_CODE_SIZE = 12
MAX_TABLE_SIZE = 1 << MAX_CODE_SIZE

EXTENSION_INTRODUCER = 0x21
IMAGE_SEPARATOR = 0x2C
TRAILER = 0x3B
GRAPHIC_CONTROL_LABEL = 0xF9

DISPOSE_NONE = 0
DISPOSE_KEEP = 1
DISPOSE_BACKGROUND = 2
DISPOSE_PREVIOUS = 3

# (first row, row step) for the four interlace passes
INTERLACE_PASSES = ((0, 8), (4, 8), (2, 4), (1, 2))


class GifError(Exception):
    """Base class for GIF decoding failures."""


class FormatError(GifError):
    """Missing GIF signature or unusable header."""


class TruncatedStreamError(GifError):
    """Data ended early or an LZW code was invalid."""


class EmptyAnimationError(GifError):
    """The file decoded to zero frames."""


class State(enum.Enum):
    READ_HEADER = 1
    READ_BLOCK = 2
    READ_EXTENSION = 3
    READ_IMAGE_DESCRIPTOR = 4
    READ_IMAGE_DATA = 5
    TRAILER = 6


# --- Data structures ---
@dataclass(frozen=True)
class GifFrame:
    pixels: bytes  # RGBA, width * height * 4
    delay_ms: int


@dataclass(frozen=True)
class ParsedGif:
    width: int
    height: int
    frames: Tuple[GifFrame, ...]

    @property
    def duration_ms(self) -> int:
        return sum(frame.delay_ms for frame in self.frames)


@dataclass(frozen=True)
class IndexedFrame:
    """One image block before compositing: palette indices plus placement."""
    indices: bytes  # width * height palette indices, top-to-bottom
    left: int
    top: int
    width: int
    height: int
    color_table: Optional[bytes]  # local table, None = use the global one
    disposal_method: int
    transparent_index: Optional[int]
    delay_ms: int


@dataclass(frozen=True)
class _ImageBlock:
    left: int
    top: int
    width: int
    height: int
    interlaced: bool
    color_table: Optional[bytes]
    min_code_size: int
    data: bytes  # concatenated LZW sub-blocks (empty when skipped)
    disposal_method: int
    transparent_index: Optional[int]
    delay_ms: int


@dataclass(frozen=True)
class LogicalScreen:
    width: int
    height: int
    global_color_table: Optional[bytes]
    offset: int  # first byte after the header and global table


# --- Byte reading ---
class _Reader:
    def __init__(self, data: BytesLike, offset: int = 0):
        self.data = bytes(data)
        self.offset = offset

    def at_end(self) -> bool:
        return self.offset >= len(self.data)

    def read(self, length: int) -> bytes:
        end = self.offset + length
        if end > len(self.data):
            raise TruncatedStreamError(
                f"wanted {length} bytes at offset {self.offset}, file has {len(self.data)}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.read(1)[0]

    def sub_blocks(self) -> Iterator[bytes]:
        """Length-prefixed sub-blocks up to the zero-length terminator."""
        size = self.u8()
        while size:
            yield self.read(size)
            size = self.u8()

    def skip_sub_blocks(self) -> None:
        for _ in self.sub_blocks():
            pass


def _color_table_size(packed: int) -> int:
    return 3 * (1 << ((packed & 0x07) + 1))


def _read_screen(data: BytesLike) -> LogicalScreen:
    if len(data) < 3 or bytes(data[:3]) != b"GIF":
        raise FormatError("Not a valid GIF file")
    if len(data) < 13:
        raise FormatError("GIF header is truncated")
    width, height, packed = struct.unpack("<HHB", bytes(data[6:11]))
    offset = 13
    global_table = None
    if packed & 0x80:
        size = _color_table_size(packed)
        global_table = bytes(data[offset:offset + size])
        if len(global_table) < size:
            logger.warning("GIF data truncated in %s: global color table has %d of %d bytes",
                           State.READ_HEADER.name, len(global_table), size)
        offset += size
    return LogicalScreen(width, height, global_table, offset)


def _walk_image_blocks(data: BytesLike, screen: LogicalScreen, read_data: bool = True) -> Iterator[_ImageBlock]:
    """
    Walk the block stream after the logical screen, yielding each image.

    Graphic control state (delay, disposal, transparency) applies to the
    next image only. Truncation stops the walk; blocks yielded so far stand.
    """
    reader = _Reader(data, screen.offset)
    delay_ms = DEFAULT_DELAY_MS
    disposal = DISPOSE_NONE
    transparent: Optional[int] = None
    state = State.READ_BLOCK

    try:
        while state is not State.TRAILER:
            if reader.at_end():
                logger.debug("GIF ended without a trailer at offset %d", reader.offset)
                break
            block_type = reader.u8()

            if block_type == EXTENSION_INTRODUCER:
                state = State.READ_EXTENSION
                label = reader.u8()
                if label == GRAPHIC_CONTROL_LABEL:
                    body = b"".join(reader.sub_blocks())
                    if len(body) >= 4:
                        gc_packed, raw_delay, index = struct.unpack("<BHB", body[:4])
                        disposal = (gc_packed >> 2) & 0x07
                        transparent = index if gc_packed & 0x01 else None
                        delay_ms = raw_delay * 10
                else:
                    reader.skip_sub_blocks()

            elif block_type == IMAGE_SEPARATOR:
                state = State.READ_IMAGE_DESCRIPTOR
                left, top, width, height, packed = struct.unpack("<HHHHB", reader.read(9))
                local_table = reader.read(_color_table_size(packed)) if packed & 0x80 else None
                min_code_size = reader.u8()

                state = State.READ_IMAGE_DATA
                if read_data:
                    lzw_data = b"".join(reader.sub_blocks())
                else:
                    reader.skip_sub_blocks()
                    lzw_data = b""

                yield _ImageBlock(
                    left=left,
                    top=top,
                    width=width,
                    height=height,
                    interlaced=bool(packed & 0x40),
                    color_table=local_table,
                    min_code_size=min_code_size,
                    data=lzw_data,
                    disposal_method=disposal,
                    transparent_index=transparent,
                    delay_ms=delay_ms or DEFAULT_DELAY_MS,
                )
                delay_ms = DEFAULT_DELAY_MS
                disposal = DISPOSE_NONE
                transparent = None

            elif block_type == TRAILER:
                state = State.TRAILER

            elif block_type == 0x00:
                continue  # stray padding between blocks

            else:
                logger.debug("Unknown block 0x%02x at offset %d, stopping", block_type, reader.offset - 1)
                break

            if state is not State.TRAILER:
                state = State.READ_BLOCK
    except TruncatedStreamError as e:
        logger.warning("GIF data truncated in %s: %s", state.name, e)


# --- LZW ---
def decompress_lzw(data: BytesLike, min_code_size: int, pixel_count: int, strict: bool = False) -> bytes:
    """
    Decode a GIF LZW stream into exactly `pixel_count` palette indices.

    Premature end or an invalid code leaves the rest zero-filled; this is
    logged, or raised as TruncatedStreamError when `strict` is set.
    """
    if not 1 <= min_code_size < MAX_CODE_SIZE:
        message = f"invalid LZW minimum code size {min_code_size}"
        if strict:
            raise TruncatedStreamError(message)
        logger.warning(message)
        return bytes(pixel_count)

    clear_code = 1 << min_code_size
    end_code = clear_code + 1

    def fresh_table() -> List[bytes]:
        return [bytes((i,)) for i in range(clear_code)] + [b"", b""]

    code_size = min_code_size + 1
    code_mask = (1 << code_size) - 1
    table = fresh_table()
    next_code = end_code + 1

    output = bytearray(pixel_count)
    out_pos = 0
    bits = 0
    bit_count = 0
    pos = 0
    prev: Optional[bytes] = None
    problem = None

    while out_pos < pixel_count:
        while bit_count < code_size and pos < len(data):
            bits |= data[pos] << bit_count
            pos += 1
            bit_count += 8
        if bit_count < code_size:
            problem = "stream exhausted"
            break
        code = bits & code_mask
        bits >>= code_size
        bit_count -= code_size

        if code == clear_code:
            code_size = min_code_size + 1
            code_mask = (1 << code_size) - 1
            table = fresh_table()
            next_code = end_code + 1
            prev = None
            continue
        if code == end_code:
            break

        if code < next_code:
            entry = table[code]
        elif code == next_code and prev is not None:
            entry = prev + prev[:1]
        else:
            problem = f"invalid code {code} (next is {next_code})"
            break

        take = min(len(entry), pixel_count - out_pos)
        output[out_pos:out_pos + take] = entry[:take]
        out_pos += take

        if prev is not None and next_code < MAX_TABLE_SIZE:
            table.append(prev + entry[:1])
            next_code += 1
            if next_code > code_mask and code_size < MAX_CODE_SIZE:
                code_size += 1
                code_mask = (1 << code_size) - 1
        prev = entry

    if out_pos < pixel_count:
        message = f"LZW decoded {out_pos} of {pixel_count} pixels ({problem or 'early end code'})"
        if strict:
            raise TruncatedStreamError(message)
        logger.warning(message)
    return bytes(output)


# --- Interlace ---
def deinterlace(pixels: BytesLike, width: int, height: int) -> bytes:
    """Reorder rows stored in the four interlace passes into top-to-bottom order."""
    source = np.frombuffer(bytes(pixels), dtype=np.uint8).reshape(height, width)
    order = [y for start, step in INTERLACE_PASSES for y in range(start, height, step)]
    result = np.empty_like(source)
    result[order] = source
    return result.tobytes()


# --- Compositing ---
def _palette(color_table: bytes) -> np.ndarray:
    """Color table as a (256, 3) array; out-of-range indices read black."""
    colors = np.zeros((256, 3), dtype=np.uint8)
    table = np.frombuffer(color_table, dtype=np.uint8)
    count = min(len(table) // 3, 256)
    colors[:count] = table[:count * 3].reshape(count, 3)
    return colors


def composite_frames(
    width: int,
    height: int,
    frames: List[IndexedFrame],
    global_color_table: Optional[bytes] = None,
) -> List[GifFrame]:
    """
    Paint indexed frames in order onto one RGBA canvas, snapshotting after each.

    Disposal happens after the snapshot: 2 clears the frame rectangle to
    transparent, 3 restores the canvas as it was before the frame painted,
    anything else leaves the canvas as is.
    """
    canvas = np.zeros((height, width, 4), dtype=np.uint8)
    output: List[GifFrame] = []

    for number, frame in enumerate(frames):
        color_table = frame.color_table or global_color_table
        if not color_table:
            logger.warning("Frame %d has no color table, skipping", number)
            continue

        before = canvas.copy() if frame.disposal_method == DISPOSE_PREVIOUS else None

        # visible part of the frame rectangle
        right = min(frame.left + frame.width, width)
        bottom = min(frame.top + frame.height, height)
        if right > frame.left and bottom > frame.top:
            indices = np.frombuffer(frame.indices, dtype=np.uint8).reshape(frame.height, frame.width)
            indices = indices[: bottom - frame.top, : right - frame.left]
            region = canvas[frame.top:bottom, frame.left:right]
            if frame.transparent_index is None:
                opaque = np.ones(indices.shape, dtype=bool)
            else:
                opaque = indices != frame.transparent_index
            region[opaque, :3] = _palette(color_table)[indices[opaque]]
            region[opaque, 3] = 255

        output.append(GifFrame(pixels=canvas.tobytes(), delay_ms=frame.delay_ms))

        if frame.disposal_method == DISPOSE_BACKGROUND:
            canvas[frame.top:frame.top + frame.height, frame.left:frame.left + frame.width] = 0
        elif frame.disposal_method == DISPOSE_PREVIOUS:
            canvas = before

    return output


# --- Entry points ---
def decode_indexed_frames(data: BytesLike) -> Tuple[LogicalScreen, List[IndexedFrame]]:
    """Parse and decompress every image block, without compositing."""
    screen = _read_screen(data)
    frames: List[IndexedFrame] = []
    for block in _walk_image_blocks(data, screen):
        pixel_count = block.width * block.height
        indices = decompress_lzw(block.data, block.min_code_size, pixel_count)
        if block.interlaced:
            indices = deinterlace(indices, block.width, block.height)
        frames.append(IndexedFrame(
            indices=indices,
            left=block.left,
            top=block.top,
            width=block.width,
            height=block.height,
            color_table=block.color_table,
            disposal_method=block.disposal_method,
            transparent_index=block.transparent_index,
            delay_ms=block.delay_ms,
        ))
    logger.debug("GIF %dx%d: %d image blocks", screen.width, screen.height, len(frames))
    return screen, frames


def parse_gif(data: BytesLike) -> ParsedGif:
    """
    Decode a complete GIF file into composited RGBA frames.

    Raises FormatError for a missing signature and EmptyAnimationError when
    nothing decodes to a frame.
    """
    screen, indexed = decode_indexed_frames(data)
    frames = composite_frames(screen.width, screen.height, indexed, screen.global_color_table)
    if not frames:
        raise EmptyAnimationError("GIF contains no decodable frames")
    return ParsedGif(width=screen.width, height=screen.height, frames=tuple(frames))


def is_animated_gif(data: BytesLike) -> bool:
    """True once a second image block is seen. Never decompresses pixel data."""
    try:
        screen = _read_screen(data)
    except FormatError:
        return False
    count = 0
    for _ in _walk_image_blocks(data, screen, read_data=False):
        count += 1
        if count > 1:
            return True
    return False
