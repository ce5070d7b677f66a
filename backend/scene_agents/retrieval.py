from __future__ import annotations

import http.client
import json
import logging
import os
import re
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from .captions import CAPTION_FETCH_ERROR, NO_ENGLISH_CAPTIONS, NO_TRANSCRIPT, normalize_captions
from .errors import ProviderError

load_dotenv()
_ENV_PATH = Path(__file__).resolve().parents[1] / ".env"
load_dotenv(dotenv_path=_ENV_PATH)

logger = logging.getLogger(__name__)

SERPAPI_URL = os.getenv("SERPAPI_URL", "https://serpapi.com/search.json")
SERPAPI_KEY = os.getenv("SERPAPI_KEY") or os.getenv("SERPAPI_API_KEY")
SEARCH_ENGINE = os.getenv("SEARCH_ENGINE", "google")
SEARCH_RESULT_LIMIT = int(os.getenv("SEARCH_RESULT_LIMIT", "5"))

YOUTUBE_API_URL = os.getenv("YOUTUBE_API_URL", "https://www.googleapis.com/youtube/v3")
YOUTUBE_API_KEY = os.getenv("YOUTUBE_API_KEY")
YOUTUBE_OAUTH_TOKEN = os.getenv("YOUTUBE_OAUTH_TOKEN")

RETRIEVAL_TIMEOUT = float(os.getenv("RETRIEVAL_TIMEOUT", "8"))
CAPTION_MAX_CHARS = int(os.getenv("CAPTION_MAX_CHARS", "4000"))

TOOL_NAME = "search_scene"

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": TOOL_NAME,
            "description": (
                "Search the web and video platforms for a movie or TV scene. Returns the top "
                "video result with its title, link, snippet and caption transcript when available."
            ),
            "parameters": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "query": {
                        "type": "string",
                        "description": (
                            "Targeted search query: a distinctive quoted line from the transcript, "
                            "any actor, character or setting you can infer, and a site hint such as "
                            "site:youtube.com."
                        ),
                    },
                },
                "required": ["query"],
            },
        },
    }
]

_WATCH_LINK = re.compile(r"^https?://(?:(?:www|m)\.)?(?:youtube\.com/watch\?(?:.*&)?v=|youtu\.be/)[\w-]{11}")
_VIDEO_ID_PATTERNS = (
    re.compile(r"[?&]v=([\w-]{11})"),
    re.compile(r"youtu\.be/([\w-]{11})"),
)

_NO_RESULTS_MARKERS = ("hasn't returned any results", "no results")
_QUOTA_MARKERS = ("run out of searches", "rate limit", "too many requests", "quota")
_AUTH_MARKERS = ("invalid api key", "api key", "forbidden", "unauthorized")


@dataclass(frozen=True)
class Evidence:
    title: str
    link: str
    snippet: str
    video_id: Optional[str]
    transcript: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _get(url: str, params: Dict[str, Any], headers: Dict[str, str] | None = None) -> str:
    query = urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})
    req = urllib.request.Request(
        f"{url}?{query}" if query else url,
        headers={"Accept": "application/json", **(headers or {})},
        method="GET",
    )
    try:
        with urllib.request.urlopen(req, timeout=RETRIEVAL_TIMEOUT) as resp:
            return resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        raise ProviderError(f"{url} returned HTTP {e.code}", status=e.code) from e
    except (urllib.error.URLError, http.client.HTTPException, TimeoutError, OSError) as e:
        raise ProviderError(f"{url} unreachable: {e}") from e
    except UnicodeDecodeError as e:
        raise ProviderError(f"{url} returned a non-UTF-8 body") from e


def _get_json(url: str, params: Dict[str, Any], headers: Dict[str, str] | None = None) -> Dict[str, Any]:
    payload = _get(url, params, headers)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProviderError(f"{url} returned invalid JSON") from e
    if not isinstance(data, dict):
        raise ProviderError(f"{url} returned an unexpected payload")
    return data


def _serpapi_error(message: str) -> ProviderError | None:
    lowered = message.lower()
    if any(marker in lowered for marker in _NO_RESULTS_MARKERS):
        return None
    if any(marker in lowered for marker in _QUOTA_MARKERS):
        return ProviderError(f"SerpAPI: {message}", status=429)
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return ProviderError(f"SerpAPI: {message}", status=403)
    return ProviderError(f"SerpAPI: {message}")


def search_web(query: str, limit: int = SEARCH_RESULT_LIMIT) -> List[Dict[str, str]]:
    if not SERPAPI_KEY:
        raise ProviderError("SERPAPI_KEY is not configured")

    data = _get_json(
        SERPAPI_URL,
        {"engine": SEARCH_ENGINE, "q": query, "num": limit, "api_key": SERPAPI_KEY},
    )
    if data.get("error"):
        error = _serpapi_error(str(data["error"]))
        if error is not None:
            raise error
        return []

    results = []
    for item in (data.get("organic_results") or [])[:limit]:
        if not isinstance(item, dict):
            continue
        link = (item.get("link") or "").strip()
        if not link:
            continue
        results.append(
            {
                "title": (item.get("title") or "").strip(),
                "link": link,
                "snippet": (item.get("snippet") or "").strip(),
            }
        )
    return results


def is_video_link(link: str) -> bool:
    return bool(_WATCH_LINK.match(link or ""))


def extract_video_id(link: str) -> str | None:
    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(link or "")
        if match:
            return match.group(1)
    return None


def _is_english(language: str) -> bool:
    code = (language or "").lower()
    return code == "en" or code.startswith("en-")


def list_caption_tracks(video_id: str) -> List[Dict[str, str]]:
    data = _get_json(
        f"{YOUTUBE_API_URL}/captions",
        {"part": "snippet", "videoId": video_id, "key": YOUTUBE_API_KEY},
    )
    tracks = []
    for item in data.get("items") or []:
        if not isinstance(item, dict):
            continue
        snippet = item.get("snippet")
        if not isinstance(snippet, dict):
            snippet = {}
        tracks.append(
            {
                "id": item.get("id") or "",
                "language": snippet.get("language") or "",
                "kind": snippet.get("trackKind") or "standard",
            }
        )
    return [track for track in tracks if track["id"]]


def pick_english_track(tracks: List[Dict[str, str]]) -> Dict[str, str] | None:
    english = [track for track in tracks if _is_english(track.get("language", ""))]
    if not english:
        return None
    # Human-authored tracks beat auto-generated ("asr") ones.
    english.sort(key=lambda track: track.get("kind", "").lower() == "asr")
    return english[0]


def download_caption(track_id: str) -> str:
    headers = {"Authorization": f"Bearer {YOUTUBE_OAUTH_TOKEN}"} if YOUTUBE_OAUTH_TOKEN else None
    return _get(
        f"{YOUTUBE_API_URL}/captions/{urllib.parse.quote(track_id)}",
        {"tfmt": "vtt", "key": YOUTUBE_API_KEY},
        headers,
    )


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def fetch_transcript(video_id: str | None) -> str:
    """Return normalized caption text, or one of the caption sentinels. Never raises."""
    if not video_id or not YOUTUBE_API_KEY:
        return NO_TRANSCRIPT

    try:
        track = pick_english_track(list_caption_tracks(video_id))
        if track is None:
            return NO_ENGLISH_CAPTIONS
        text = normalize_captions(download_caption(track["id"]))
    except (ProviderError, http.client.HTTPException, OSError, ValueError, AttributeError, TypeError) as exc:
        logger.warning("Caption fetch failed for %s: %s", video_id, exc)
        return CAPTION_FETCH_ERROR

    return _truncate(text, CAPTION_MAX_CHARS) if text else NO_ENGLISH_CAPTIONS


def run_scene_search(query: str) -> Evidence | None:
    """Search for ``query`` and distill the top video hit into Evidence.

    Returns ``None`` when no result links to a video watch page. Search
    provider failures propagate as ``ProviderError`` so the quota breaker can
    classify them; caption failures never do.
    """
    results = search_web(query)
    videos = [item for item in results if is_video_link(item["link"])]
    if not videos:
        logger.info("No video results for query %r (%d web results)", query, len(results))
        return None

    top = videos[0]
    video_id = extract_video_id(top["link"])
    return Evidence(
        title=top["title"],
        link=top["link"],
        snippet=top["snippet"],
        video_id=video_id,
        transcript=fetch_transcript(video_id),
    )
