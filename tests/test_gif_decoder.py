"""
Tests for gif_decoder.py.

Tests cover:
- Header validation and animation detection
- Frame delays and graphic control reset
- LZW decompression, table resets, the 12-bit cap, truncation and strict mode
- Interlaced rows
- Compositing: transparency, local tables, disposal methods 1, 2 and 3
- Tolerance for padding bytes, missing color tables and truncated files
- Agreement with Pillow on a noisy 256-color animation
"""

import io
import logging
import random

import numpy as np
import pytest
from PIL import Image

from conftest import PALETTE, FrameSpec, build_gif, lzw_encode, rgba_at
from gif_decoder import (
    DISPOSE_BACKGROUND,
    DISPOSE_KEEP,
    DISPOSE_PREVIOUS,
    EmptyAnimationError,
    FormatError,
    TruncatedStreamError,
    decode_indexed_frames,
    decompress_lzw,
    deinterlace,
    is_animated_gif,
    parse_gif,
)

CLEAR = (0, 0, 0, 0)
RED = (255, 0, 0, 255)
GREEN = (0, 255, 0, 255)
BLUE = (0, 0, 255, 255)
WHITE = (255, 255, 255, 255)


class TestHeader:
    """Test signature and header handling."""

    def test_missing_signature(self):
        """Test non-GIF data raises FormatError."""
        with pytest.raises(FormatError):
            parse_gif(b"\x89PNG\r\n\x1a\n" + bytes(20))

    def test_short_header(self):
        """Test a header cut before the logical screen raises FormatError."""
        with pytest.raises(FormatError):
            parse_gif(b"GIF89a\x02\x00")

    def test_no_images(self):
        """Test a file without image blocks raises EmptyAnimationError."""
        with pytest.raises(EmptyAnimationError):
            parse_gif(build_gif(2, 2, []))

    def test_dimensions(self, two_frame_gif):
        """Test logical screen size is reported."""
        gif = parse_gif(two_frame_gif)
        assert (gif.width, gif.height) == (2, 2)


class TestIsAnimated:
    """Test is_animated_gif."""

    def test_single_frame(self):
        """Test one image block is not animated."""
        assert is_animated_gif(build_gif(2, 2, [FrameSpec([0] * 4, 2, 2)])) is False

    def test_two_frames(self, two_frame_gif):
        """Test two image blocks are animated."""
        assert is_animated_gif(two_frame_gif) is True

    def test_bad_signature(self):
        """Test non-GIF data is never animated and never raises."""
        assert is_animated_gif(b"not a gif at all") is False
        assert is_animated_gif(b"") is False


class TestDelays:
    """Test frame delays from graphic control extensions."""

    def test_centiseconds_to_ms(self, two_frame_gif):
        """Test delays are converted to milliseconds."""
        gif = parse_gif(two_frame_gif)
        assert [frame.delay_ms for frame in gif.frames] == [100, 200]
        assert gif.duration_ms == 300

    def test_zero_delay_defaults(self):
        """Test a zero delay becomes 100 ms."""
        gif = parse_gif(build_gif(2, 2, [FrameSpec([0] * 4, 2, 2, delay_cs=0)]))
        assert gif.frames[0].delay_ms == 100

    def test_control_applies_to_next_image_only(self):
        """Test delay and disposal reset after each image."""
        data = build_gif(2, 2, [
            FrameSpec([0] * 4, 2, 2, delay_cs=50, disposal=DISPOSE_BACKGROUND, transparent=3),
            FrameSpec([1] * 4, 2, 2, delay_cs=None),
        ])
        _, frames = decode_indexed_frames(data)
        assert frames[0].delay_ms == 500
        assert frames[0].disposal_method == DISPOSE_BACKGROUND
        assert frames[0].transparent_index == 3
        assert frames[1].delay_ms == 100
        assert frames[1].disposal_method == 0
        assert frames[1].transparent_index is None


class TestLzw:
    """Test decompress_lzw."""

    def test_round_trip_repetitive(self):
        """Test runs that exercise the code-equals-next-code case."""
        indices = [0] * 300 + [i % 4 for i in range(700)]
        encoded = lzw_encode(indices, 2)
        assert decompress_lzw(encoded, 2, len(indices)) == bytes(indices)

    def test_round_trip_noise(self):
        """Test varied data that grows the code size past 8 bits."""
        rng = random.Random(3)
        indices = [rng.randrange(16) for _ in range(3000)]
        encoded = lzw_encode(indices, 4)
        assert decompress_lzw(encoded, 4, len(indices), strict=True) == bytes(indices)

    def test_early_end_code_zero_fills(self):
        """Test an end code before the pixel count leaves zeros."""
        encoded = lzw_encode([1, 1], 2)
        assert decompress_lzw(encoded, 2, 4) == bytes([1, 1, 0, 0])

    def test_truncated_stream_soft(self):
        """Test a cut stream keeps what decoded and zero-fills the rest."""
        indices = [0, 1, 2, 3] * 10
        encoded = lzw_encode(indices, 2)[:3]
        result = decompress_lzw(encoded, 2, len(indices))
        assert len(result) == len(indices)
        assert result[:4] == bytes([0, 1, 2, 3])
        assert result.endswith(b"\x00\x00")

    def test_truncated_stream_strict(self):
        """Test strict mode raises on a cut stream."""
        encoded = lzw_encode([0, 1, 2, 3] * 10, 2)[:3]
        with pytest.raises(TruncatedStreamError):
            decompress_lzw(encoded, 2, 40, strict=True)

    def test_invalid_min_code_size(self):
        """Test an impossible minimum code size gives blank output."""
        assert decompress_lzw(b"\x00\x01", 0, 4) == bytes(4)
        with pytest.raises(TruncatedStreamError):
            decompress_lzw(b"\x00\x01", 12, 4, strict=True)

    def test_clear_code_resets_full_table(self):
        """Test clear codes sent whenever the table fills start a fresh table."""
        rng = random.Random(11)
        indices = [rng.randrange(256) for _ in range(30000)]
        encoded = lzw_encode(indices, 8, clear_when_full=True)
        assert encoded != lzw_encode(indices, 8)
        assert decompress_lzw(encoded, 8, len(indices), strict=True) == bytes(indices)

    def test_full_table_stays_at_twelve_bits(self):
        """Test a stream that keeps coding once all 4096 entries are taken."""
        rng = random.Random(12)
        indices = [rng.randrange(256) for _ in range(30000)]
        encoded = lzw_encode(indices, 8)
        assert decompress_lzw(encoded, 8, len(indices), strict=True) == bytes(indices)


class TestDeinterlace:
    """Test interlaced row ordering."""

    def test_eight_rows(self):
        """Test pass order 0, 4, 2, 6, 1, 3, 5, 7."""
        stored = bytes([0, 4, 2, 6, 1, 3, 5, 7])
        assert deinterlace(stored, 1, 8) == bytes(range(8))

    def test_interlaced_frame(self):
        """Test an interlaced image decodes to top-to-bottom rows."""
        palette = [(y * 10, 0, 0) for y in range(16)]
        data = build_gif(1, 10, [FrameSpec(list(range(10)), 1, 10, interlaced=True)], palette=palette)
        pixels = parse_gif(data).frames[0].pixels
        assert [rgba_at(pixels, 1, 0, y)[0] for y in range(10)] == [y * 10 for y in range(10)]


class TestCompositing:
    """Test canvas painting and disposal."""

    def test_single_frame_colors(self):
        """Test palette indices become RGBA pixels."""
        gif = parse_gif(build_gif(2, 2, [FrameSpec([0, 1, 2, 3], 2, 2)]))
        pixels = gif.frames[0].pixels
        assert len(pixels) == 2 * 2 * 4
        assert rgba_at(pixels, 2, 0, 0) == RED
        assert rgba_at(pixels, 2, 1, 0) == GREEN
        assert rgba_at(pixels, 2, 0, 1) == BLUE
        assert rgba_at(pixels, 2, 1, 1) == WHITE

    def test_unpainted_canvas_is_transparent(self):
        """Test pixels outside the first frame stay clear."""
        gif = parse_gif(build_gif(3, 3, [FrameSpec([0], 1, 1, left=1, top=1)]))
        pixels = gif.frames[0].pixels
        assert rgba_at(pixels, 3, 1, 1) == RED
        assert rgba_at(pixels, 3, 0, 0) == CLEAR

    def test_transparent_index_keeps_canvas(self):
        """Test transparent pixels show the previous frame."""
        gif = parse_gif(build_gif(2, 2, [
            FrameSpec([0] * 4, 2, 2, disposal=DISPOSE_KEEP),
            FrameSpec([1, 2, 1, 2], 2, 2, transparent=1),
        ]))
        pixels = gif.frames[1].pixels
        assert rgba_at(pixels, 2, 0, 0) == RED
        assert rgba_at(pixels, 2, 1, 0) == BLUE

    def test_local_color_table(self):
        """Test a local table overrides the global one."""
        local = [(10, 20, 30), (40, 50, 60)]
        gif = parse_gif(build_gif(1, 1, [FrameSpec([1], 1, 1, palette=local)]))
        assert rgba_at(gif.frames[0].pixels, 1, 0, 0) == (40, 50, 60, 255)

    def test_frame_clipped_to_canvas(self):
        """Test a frame hanging past the canvas edge paints only the overlap."""
        gif = parse_gif(build_gif(2, 2, [FrameSpec([3] * 4, 2, 2, left=1, top=1)]))
        pixels = gif.frames[0].pixels
        assert rgba_at(pixels, 2, 1, 1) == WHITE
        assert rgba_at(pixels, 2, 0, 0) == CLEAR

    def test_disposal_keep(self):
        """Test disposal 1 leaves the frame for the next one."""
        gif = parse_gif(build_gif(4, 4, [
            FrameSpec([0] * 4, 2, 2, disposal=DISPOSE_KEEP),
            FrameSpec([1], 1, 1, left=3, top=3),
        ]))
        pixels = gif.frames[1].pixels
        assert rgba_at(pixels, 4, 0, 0) == RED
        assert rgba_at(pixels, 4, 3, 3) == GREEN
        assert rgba_at(pixels, 4, 2, 2) == CLEAR

    def test_disposal_background(self):
        """Test disposal 2 clears the rectangle after the snapshot."""
        gif = parse_gif(build_gif(4, 4, [
            FrameSpec([0] * 4, 2, 2, disposal=DISPOSE_BACKGROUND),
            FrameSpec([1], 1, 1, left=3, top=3),
        ]))
        assert rgba_at(gif.frames[0].pixels, 4, 0, 0) == RED
        pixels = gif.frames[1].pixels
        assert rgba_at(pixels, 4, 0, 0) == CLEAR
        assert rgba_at(pixels, 4, 1, 1) == CLEAR
        assert rgba_at(pixels, 4, 3, 3) == GREEN

    def test_disposal_background_leaves_outside(self):
        """Test disposal 2 only clears its own rectangle."""
        gif = parse_gif(build_gif(2, 2, [
            FrameSpec([0] * 4, 2, 2, disposal=DISPOSE_KEEP),
            FrameSpec([1], 1, 1, disposal=DISPOSE_BACKGROUND),
            FrameSpec([2], 1, 1, left=1, top=1),
        ]))
        pixels = gif.frames[2].pixels
        assert rgba_at(pixels, 2, 0, 0) == CLEAR
        assert rgba_at(pixels, 2, 1, 0) == RED
        assert rgba_at(pixels, 2, 1, 1) == BLUE

    def test_disposal_previous(self):
        """Test disposal 3 restores the canvas from before the frame."""
        gif = parse_gif(build_gif(2, 2, [
            FrameSpec([0] * 4, 2, 2, disposal=DISPOSE_KEEP),
            FrameSpec([1] * 4, 2, 2, disposal=DISPOSE_PREVIOUS),
            FrameSpec([2], 1, 1, left=1, top=1),
        ]))
        assert rgba_at(gif.frames[1].pixels, 2, 0, 0) == GREEN
        pixels = gif.frames[2].pixels
        assert rgba_at(pixels, 2, 0, 0) == RED
        assert rgba_at(pixels, 2, 1, 1) == BLUE

    def test_every_frame_is_full_canvas(self, two_frame_gif):
        """Test each output frame is width * height * 4 bytes."""
        for frame in parse_gif(two_frame_gif).frames:
            assert len(frame.pixels) == 2 * 2 * 4


class TestTolerance:
    """Test damaged and unusual files."""

    def test_padding_between_blocks(self, two_frame_gif):
        """Test zero bytes between blocks are skipped."""
        padded = two_frame_gif[:-1] + b"\x00\x00\x3b"
        assert len(parse_gif(padded).frames) == 2

    def test_missing_trailer(self, two_frame_gif):
        """Test a file ending without a trailer keeps its frames."""
        assert len(parse_gif(two_frame_gif[:-1]).frames) == 2

    def test_truncated_second_frame(self, two_frame_gif, caplog):
        """Test a cut file keeps the frames completed before the cut."""
        with caplog.at_level(logging.WARNING, logger="gif_decoder"):
            gif = parse_gif(two_frame_gif[:-4])
        assert "truncated in READ_IMAGE_DATA" in caplog.text
        assert len(gif.frames) == 1
        assert rgba_at(gif.frames[0].pixels, 2, 0, 0) == RED

    def test_frames_without_color_table_are_skipped(self):
        """Test a frame with no global or local table is dropped."""
        data = build_gif(1, 1, [
            FrameSpec([0], 1, 1),
            FrameSpec([1], 1, 1, palette=PALETTE),
        ], palette=None)
        gif = parse_gif(data)
        assert len(gif.frames) == 1
        assert rgba_at(gif.frames[0].pixels, 1, 0, 0) == GREEN

    def test_no_color_tables_at_all(self):
        """Test a file where no frame can be colored is empty."""
        data = build_gif(1, 1, [FrameSpec([0], 1, 1)], palette=None)
        with pytest.raises(EmptyAnimationError):
            parse_gif(data)

    def test_truncated_global_color_table(self, caplog):
        """Test a header cut inside the global table is reported as a header problem."""
        data = build_gif(2, 2, [FrameSpec([0] * 4, 2, 2)])[:13 + 5]
        with caplog.at_level(logging.WARNING, logger="gif_decoder"):
            with pytest.raises(EmptyAnimationError):
                parse_gif(data)
        assert "truncated in READ_HEADER" in caplog.text


class TestAgainstPillow:
    """Test decoded frames against Pillow on a file Pillow wrote."""

    WIDTH = 200
    HEIGHT = 150

    def _noise_frame(self, rng):
        pixels = rng.integers(0, 256, size=(self.HEIGHT, self.WIDTH), dtype=np.uint8)
        frame = Image.frombytes("P", (self.WIDTH, self.HEIGHT), pixels.tobytes())
        frame.putpalette(rng.integers(0, 256, size=768, dtype=np.uint8).tolist())
        return frame

    def test_noisy_animation_matches_pillow(self):
        """Test every composited frame equals Pillow's RGBA conversion."""
        rng = np.random.default_rng(5)
        frames = [self._noise_frame(rng), self._noise_frame(rng)]
        buffer = io.BytesIO()
        frames[0].save(buffer, format="GIF", save_all=True, append_images=frames[1:],
                       duration=[300, 1000], loop=0)
        data = buffer.getvalue()

        gif = parse_gif(data)
        reference = Image.open(io.BytesIO(data))
        assert (gif.width, gif.height) == reference.size
        assert len(gif.frames) == reference.n_frames == 2
        assert [frame.delay_ms for frame in gif.frames] == [300, 1000]
        for i, frame in enumerate(gif.frames):
            reference.seek(i)
            assert frame.pixels == reference.convert("RGBA").tobytes()
