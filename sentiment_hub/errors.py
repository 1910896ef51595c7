"""Error taxonomy for the review insight service."""


class SentimentHubError(Exception):
    """Base class for all service errors."""


class ConfigError(SentimentHubError):
    """Invalid configuration or missing credentials."""


class AnalysisError(SentimentHubError):
    """The structured-extraction call failed, timed out or returned an invalid payload."""


class MalformedResponseError(AnalysisError):
    """The model answered with empty or unparseable JSON."""


class ChatError(SentimentHubError):
    """The chat stream could not be established or was interrupted."""


class SessionStateError(SentimentHubError):
    """The requested operation is not valid in the current session state."""


class OperationInProgressError(SessionStateError):
    """An analysis or chat turn is already running for this session."""
