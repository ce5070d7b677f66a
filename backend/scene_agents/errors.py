from __future__ import annotations


class SceneFinderError(Exception):
    """Base class for every failure the scene pipeline can raise."""


class ValidationError(SceneFinderError):
    """Transcript or upload is missing or malformed. Not retriable."""


class TranscriptionUnavailable(SceneFinderError):
    """Speech-to-text failed; the request cannot continue."""


class IdentificationError(SceneFinderError):
    """The identification model could not be reached on a non-degradable call."""


class MalformedModelOutput(IdentificationError):
    """The model answered, but not with a parsable scene record."""


class MalformedFinalOutput(MalformedModelOutput):
    """The evidence-backed pass returned junk. Callers fall back to phase 1."""


class RetrievalDegraded(SceneFinderError):
    """Any retrieval-path failure. Never surfaced past the resolver."""


class ProviderError(RetrievalDegraded):
    """A search or caption provider call failed.

    ``status`` carries the HTTP status when the provider answered with one,
    and is ``None`` for network failures and timeouts.
    """

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status
