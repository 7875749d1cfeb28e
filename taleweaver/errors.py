"""Error taxonomy.

Only ConfigMissing crosses the story-engine boundary. Every other category
is absorbed by the retry orchestrator (retry, then fallback) or, for
SummaryFailure, logged and dropped by the summary engine.
"""


class TaleweaverError(Exception):
    """Base class for all errors raised by taleweaver."""


class ConfigMissing(TaleweaverError):
    """The chat-completion capability is not configured. Fatal, never retried."""


class TransportFailure(TaleweaverError):
    """The model backend could not be reached or returned an unusable body."""


class ExtractionFailure(TaleweaverError):
    """No plausible JSON span was found in the model output."""


class RepairFailure(TaleweaverError):
    """Tolerant repair could not turn the candidate into parseable JSON."""


class ValidationFailure(TaleweaverError):
    """Parsed JSON is missing a field the call site requires."""


class SummaryFailure(TaleweaverError):
    """A background summarization step failed; the digest is left unchanged."""


class IncompatibleSave(TaleweaverError):
    """A saved session was written by an unsupported save format version."""
