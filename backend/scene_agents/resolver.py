from __future__ import annotations

import json
import logging
import os
from enum import Enum

from dotenv import load_dotenv
from openai import OpenAI, OpenAIError

from .errors import IdentificationError, MalformedFinalOutput, MalformedModelOutput, ValidationError
from .quota import NO_RESULTS_MESSAGE, QuotaBreaker
from .records import SCENE_RECORD_SHAPE, SceneRecord, assemble_record, parse_scene_record
from .retrieval import TOOL_NAME, TOOLS

load_dotenv()

logger = logging.getLogger(__name__)

MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
OPENAI_TIMEOUT = float(os.getenv("OPENAI_TIMEOUT", "8"))
TRANSCRIPT_MAX_CHARS = int(os.getenv("TRANSCRIPT_MAX_CHARS", "5000"))

client: OpenAI | None = None


def _client() -> OpenAI:
    global client
    if client is None:
        client = OpenAI(api_key=os.getenv("OPENAI_API_KEY"), timeout=OPENAI_TIMEOUT)
    return client

IDENTIFY_PROMPT = (
    "You are a movie and TV analyst. Given a short dialogue transcript (often fragmented "
    "or noisy speech-to-text output), identify the movie or series scene it comes from. "
    "When the evidence is ambiguous, prefer modern (post-2000), lighthearted or comedic "
    "titles. If you cannot identify the title, use \"Unknown\" and leave season and "
    "episode null. Always give a best-guess context_or_summary. Respond with exactly one "
    "JSON object of this shape and nothing else:\n" + SCENE_RECORD_SHAPE
)

SEARCH_PROMPT = (
    "You are a movie and TV analyst who could not identify a scene from memory. "
    f"Call the {TOOL_NAME} tool to look it up. Build a targeted query: quote the most "
    "distinctive fragment of the transcript, add any actor, character, or setting you can "
    "infer, and add a site restriction hint such as site:youtube.com. Call the tool once "
    "with your single best query."
)

FINAL_PROMPT = (
    "Using the transcript, your earlier answer, and the search evidence above, give your "
    "final identification. Trust matching video titles and caption text over memory. If "
    "the evidence reports no results, reason from the transcript alone. Respond with "
    "exactly one JSON object of this shape and nothing else:\n" + SCENE_RECORD_SHAPE
)


class ResolverState(str, Enum):
    INITIAL = "initial"
    IDENTIFIED_DIRECT = "identified_direct"
    TOOL_ROUND = "tool_round"
    FINAL = "final"


def _transition(state: ResolverState, reason: str) -> ResolverState:
    logger.info("Resolver -> %s (%s)", state.value, reason)
    return state


def _parse_args(raw: str) -> dict:
    try:
        args = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return args if isinstance(args, dict) else {}


def _transcript_message(transcript: str) -> dict:
    return {"role": "user", "content": f"Transcript:\n{transcript}"}


def validate_transcript(transcript: str | None) -> str:
    text = transcript.strip() if isinstance(transcript, str) else ""
    if not text:
        raise ValidationError("Transcript is empty.")
    if len(text) > TRANSCRIPT_MAX_CHARS:
        raise ValidationError(f"Transcript exceeds {TRANSCRIPT_MAX_CHARS} characters.")
    return text


def identify_direct(transcript: str) -> SceneRecord:
    try:
        response = _client().chat.completions.create(
            model=MODEL,
            messages=[
                {"role": "system", "content": IDENTIFY_PROMPT},
                _transcript_message(transcript),
            ],
            response_format={"type": "json_object"},
        )
    except OpenAIError as exc:
        raise IdentificationError(f"Identification request failed: {exc}") from exc

    return parse_scene_record(response.choices[0].message.content)


def _identify_with_search(transcript: str, initial: SceneRecord, breaker: QuotaBreaker) -> SceneRecord:
    messages = [
        {"role": "system", "content": SEARCH_PROMPT},
        _transcript_message(transcript),
        {
            "role": "assistant",
            "content": json.dumps(initial.model_dump()),
        },
        {"role": "user", "content": "That title is Unknown. Search for the scene."},
    ]

    response = _client().chat.completions.create(
        model=MODEL,
        messages=messages,
        tools=TOOLS,
        tool_choice="auto",
    )

    message = response.choices[0].message
    tool_calls = [call for call in (message.tool_calls or []) if call.function and call.function.name == TOOL_NAME]
    queries = [(call, (_parse_args(call.function.arguments).get("query") or "").strip()) for call in tool_calls]
    if not queries or not any(query for _, query in queries):
        logger.info("Skipping retrieval: no usable search query")
        return initial

    outputs = []
    for call, query in queries:
        if not query:
            payload = {"status": "no_results", "message": NO_RESULTS_MESSAGE}
        else:
            outcome = breaker.call(query)
            if outcome.exhausted:
                logger.warning("Search quota exhausted, keeping phase 1 result")
                return initial
            payload = outcome.to_tool_payload()
        outputs.append(
            {
                "role": "tool",
                "tool_call_id": call.id,
                "content": json.dumps(payload),
            }
        )

    # The final call answers under the analyst instructions, not the search ones.
    follow_up = [{"role": "system", "content": IDENTIFY_PROMPT}] + messages[1:]
    follow_up += [message.model_dump(exclude_none=True)] + outputs
    follow_up.append({"role": "user", "content": FINAL_PROMPT})

    final = _client().chat.completions.create(
        model=MODEL,
        messages=follow_up,
        tools=TOOLS,
        tool_choice="none",
        response_format={"type": "json_object"},
    )
    return parse_scene_record(final.choices[0].message.content, MalformedFinalOutput)


def resolve_scene(transcript: str, breaker: QuotaBreaker | None = None) -> SceneRecord:
    """Identify the scene a transcript comes from.

    Phase 1 asks the model from memory alone. Only an ``Unknown`` title opens
    a single search round, whose evidence feeds one final identification call.
    Every failure after phase 1 falls back to the phase 1 record.
    """
    text = validate_transcript(transcript)
    breaker = breaker or QuotaBreaker()

    logger.info("Resolver -> %s (%d chars)", ResolverState.INITIAL.value, len(text))
    initial = identify_direct(text)

    if not initial.is_unknown:
        _transition(ResolverState.IDENTIFIED_DIRECT, f"identified {initial.movie_or_series!r}")
        return assemble_record(initial)

    state = _transition(ResolverState.TOOL_ROUND, "phase 1 returned Unknown")
    try:
        record = _identify_with_search(text, initial, breaker)
    except MalformedFinalOutput as exc:
        logger.warning("Final identification unparsable, keeping phase 1 result: %s", exc)
        record = initial
    except OpenAIError as exc:
        logger.warning("Search-round model call failed, keeping phase 1 result: %s", exc)
        record = initial

    _transition(ResolverState.FINAL, f"{state.value} resolved {record.movie_or_series!r}")
    return assemble_record(record)
