"""
Caption payload normalization.

Every line of a cue-timed payload is classified into one of a fixed set of
shapes; only spoken-text lines survive, joined by single spaces. The result
never contains a line break, and a payload without line breaks is already
flat text, so normalizing twice changes nothing.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import Enum

NO_TRANSCRIPT = "Transcript not fetched."
NO_ENGLISH_CAPTIONS = "No English captions available."
CAPTION_FETCH_ERROR = "Error fetching transcript."

_HEADER = re.compile(r"^WEBVTT(?:\s|$)")
_METADATA = re.compile(r"^(?:Kind|Language):\s*[\w-]*$")
_CUE_INDEX = re.compile(r"^\d+$")
_TIMECODE = re.compile(r"^\d{2}:\d{2}:\d{2}\.\d{3}\s+-->\s+\d{2}:\d{2}:\d{2}\.\d{3}(?:\s+.*)?$")


class LineKind(str, Enum):
    HEADER = "header"
    METADATA = "metadata"
    CUE_INDEX = "cue_index"
    TIMECODE = "timecode"
    BLANK = "blank"
    CONTENT = "content"


def classify_line(line: str, position: int) -> LineKind:
    text = line.strip()
    if not text:
        return LineKind.BLANK
    if position == 0 and _HEADER.match(text):
        return LineKind.HEADER
    if _METADATA.match(text):
        return LineKind.METADATA
    if _CUE_INDEX.match(text):
        return LineKind.CUE_INDEX
    if _TIMECODE.match(text):
        return LineKind.TIMECODE
    return LineKind.CONTENT


def normalize_captions(payload: str | Iterable[str]) -> str:
    if isinstance(payload, str):
        lines = payload.splitlines()
        if lines == [payload]:
            return payload.strip()
    else:
        lines = list(payload)
    spoken = [
        line.strip()
        for position, line in enumerate(lines)
        if classify_line(line, position) is LineKind.CONTENT
    ]
    return " ".join(spoken)
