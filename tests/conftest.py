import json
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest


ROOT_DIR = Path(__file__).resolve().parents[1]
BACKEND_DIR = ROOT_DIR / "backend"

if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from scene_agents import resolver  # noqa: E402


class FakeMessage:
    def __init__(self, content=None, tool_calls=None):
        self.content = content
        self.tool_calls = tool_calls

    def model_dump(self, **kwargs):
        payload = {"role": "assistant", "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.function.name, "arguments": call.function.arguments},
                }
                for call in self.tool_calls
            ]
        if kwargs.get("exclude_none"):
            payload = {k: v for k, v in payload.items() if v is not None}
        return payload


class FakeCompletions:
    """Replays scripted chat completions and records every request."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.responses:
            raise AssertionError("Unexpected chat completion request")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def completion(content=None, tool_calls=None):
    message = FakeMessage(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def record_completion(**fields):
    return completion(content=json.dumps(fields))


def tool_call(query, call_id="call_1", name="search_scene"):
    arguments = json.dumps({"query": query}) if query is not None else "{}"
    return SimpleNamespace(id=call_id, type="function", function=SimpleNamespace(name=name, arguments=arguments))


UNKNOWN_RECORD = {
    "movie_or_series": "Unknown",
    "season": None,
    "episode": None,
    "characters": "Unknown",
    "timestamp": "Unknown",
    "context_or_summary": "Someone asks for an item to be put in their box.",
}


@pytest.fixture
def fake_openai(monkeypatch):
    def _install(*responses):
        completions = FakeCompletions(responses)
        monkeypatch.setattr(resolver, "client", SimpleNamespace(chat=SimpleNamespace(completions=completions)))
        return completions

    return _install
