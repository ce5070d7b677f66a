from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from openai import OpenAI, OpenAIError

from .errors import TranscriptionUnavailable

load_dotenv()

logger = logging.getLogger(__name__)

ASR_MODEL = os.getenv("OPENAI_ASR_MODEL", "whisper-1")
OPENAI_TIMEOUT = float(os.getenv("OPENAI_TIMEOUT", "8"))

client: OpenAI | None = None


def _client() -> OpenAI:
    global client
    if client is None:
        client = OpenAI(api_key=os.getenv("OPENAI_API_KEY"), timeout=OPENAI_TIMEOUT)
    return client


def transcribe_audio(audio_path: Path) -> str:
    try:
        with audio_path.open("rb") as audio_file:
            transcript = _client().audio.transcriptions.create(
                model=ASR_MODEL,
                file=audio_file,
            )
    except (OpenAIError, OSError) as exc:
        raise TranscriptionUnavailable(f"Transcription failed: {exc}") from exc

    text = (getattr(transcript, "text", "") or "").strip()
    if not text:
        raise TranscriptionUnavailable("Transcription returned no speech.")

    logger.info("Transcribed %s (%d chars)", audio_path.name, len(text))
    return text
