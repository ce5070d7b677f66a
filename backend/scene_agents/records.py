from __future__ import annotations

import json
import re
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import MalformedModelOutput

UNKNOWN = "Unknown"

TIMESTAMP_PATTERN = re.compile(r"^Approx\. \d{2}:\d{2}:\d{2}$")
_BARE_TIME = re.compile(r"^(?:approx\.?\s*)?(?:(\d{1,2}):)?(\d{1,2}):(\d{2})$", re.IGNORECASE)
_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")

SCENE_RECORD_SHAPE = (
    "{\n"
    '  "movie_or_series": string (title, or "Unknown"),\n'
    '  "season": integer or null (only for series),\n'
    '  "episode": integer or null (only for series),\n'
    '  "characters": array of strings, or "Unknown",\n'
    '  "timestamp": "Approx. HH:MM:SS" or "Unknown",\n'
    '  "context_or_summary": string (always present, best guess allowed)\n'
    "}"
)


class SceneRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    movie_or_series: str
    season: Optional[int] = None
    episode: Optional[int] = None
    characters: Union[list[str], Literal["Unknown"]] = UNKNOWN
    timestamp: str = UNKNOWN
    context_or_summary: str

    @field_validator("movie_or_series", mode="before")
    @classmethod
    def _title(cls, value):
        text = str(value or "").strip()
        return text or UNKNOWN

    @field_validator("season", "episode", mode="before")
    @classmethod
    def _episode_number(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value
        match = re.search(r"\d+", str(value))
        return int(match.group()) if match else None

    @field_validator("characters", mode="before")
    @classmethod
    def _characters(cls, value):
        if value is None:
            return UNKNOWN
        if isinstance(value, str):
            text = value.strip()
            if not text or text.lower() == UNKNOWN.lower():
                return UNKNOWN
            return [part.strip() for part in text.split(",") if part.strip()]
        if isinstance(value, (list, tuple)):
            names = [str(item).strip() for item in value if str(item or "").strip()]
            return names or UNKNOWN
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _timestamp(cls, value):
        text = str(value or "").strip()
        if TIMESTAMP_PATTERN.match(text):
            return text
        match = _BARE_TIME.match(text)
        if not match:
            return UNKNOWN
        hours, minutes, seconds = (int(part or 0) for part in match.groups())
        if minutes > 59 or seconds > 59:
            return UNKNOWN
        return f"Approx. {hours:02d}:{minutes:02d}:{seconds:02d}"

    @field_validator("context_or_summary", mode="before")
    @classmethod
    def _summary(cls, value):
        return str(value or "").strip()

    @property
    def is_unknown(self) -> bool:
        return self.movie_or_series == UNKNOWN


def parse_scene_record(content: str | None, error_cls: type[MalformedModelOutput] = MalformedModelOutput) -> SceneRecord:
    raw = _FENCE.sub("", (content or "").strip())
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise error_cls(f"Model output is not JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise error_cls("Model output is not a JSON object")

    try:
        return SceneRecord.model_validate(payload)
    except PydanticValidationError as exc:
        raise error_cls(f"Model output does not match the scene record shape: {exc}") from exc


def assemble_record(record: SceneRecord) -> SceneRecord:
    """Enforce the unknown-title invariant. Repairs instead of rejecting."""
    if record.is_unknown and (record.season is not None or record.episode is not None):
        return record.model_copy(update={"season": None, "episode": None})
    return record
