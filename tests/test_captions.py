"""Tests for caption payload normalization."""

import pytest

from scene_agents.captions import LineKind, classify_line, normalize_captions


SAMPLE_VTT = """WEBVTT
Kind: captions
Language: en

1
00:00:01.000 --> 00:00:03.500
I'm sorry, what?

2
00:00:03.600 --> 00:00:06.000 align:start position:0%
Put it in my box.
Just take it out

3
00:00:06.100 --> 00:00:08.000
and put it in my box.
"""


class TestClassifyLine:
    @pytest.mark.parametrize(
        "line,position,expected",
        [
            ("WEBVTT", 0, LineKind.HEADER),
            ("Kind: captions", 1, LineKind.METADATA),
            ("Language: en-US", 2, LineKind.METADATA),
            ("", 3, LineKind.BLANK),
            ("   ", 3, LineKind.BLANK),
            ("12", 4, LineKind.CUE_INDEX),
            ("00:01:02.003 --> 00:01:04.500", 5, LineKind.TIMECODE),
            ("00:01:02.003 --> 00:01:04.500 line:90%", 5, LineKind.TIMECODE),
            ("We need to go deeper.", 6, LineKind.CONTENT),
        ],
    )
    def test_line_shapes(self, line, position, expected):
        assert classify_line(line, position) is expected

    def test_header_only_on_first_line(self):
        assert classify_line("WEBVTT", 7) is LineKind.CONTENT

    def test_partial_timecode_is_content(self):
        assert classify_line("It was 00:01:02.003 when it happened", 3) is LineKind.CONTENT


class TestNormalizeCaptions:
    def test_flattens_spoken_text_in_order(self):
        assert normalize_captions(SAMPLE_VTT) == (
            "I'm sorry, what? Put it in my box. Just take it out and put it in my box."
        )

    def test_accepts_line_iterables(self):
        lines = SAMPLE_VTT.splitlines()
        assert normalize_captions(lines) == normalize_captions(SAMPLE_VTT)

    def test_empty_payload(self):
        assert normalize_captions("WEBVTT\n\n") == ""

    def test_header_without_cues(self):
        assert normalize_captions("WEBVTT\n") == ""

    def test_flat_text_is_kept(self):
        assert normalize_captions("  WEBVTT is the format, he said ") == "WEBVTT is the format, he said"

    def test_windows_line_endings(self):
        payload = "WEBVTT\r\n\r\n1\r\n00:00:01.000 --> 00:00:02.000\r\nHello there.\r\n"
        assert normalize_captions(payload) == "Hello there."

    @pytest.mark.parametrize(
        "payload",
        [
            SAMPLE_VTT,
            "WEBVTT\n\n00:00:00.000 --> 00:00:01.000\nWe need to go deeper.\n",
            "Already flat text with no cues.",
            "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\nWEBVTT is the format, he said\n",
            "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\n00:00:05.000\n\n2\n00:00:02.000 --> 00:00:03.000\n--> 00:00:06.000\n",
            "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\nKind: captions\n",
            "",
        ],
    )
    def test_idempotent(self, payload):
        once = normalize_captions(payload)
        assert normalize_captions(once) == once
