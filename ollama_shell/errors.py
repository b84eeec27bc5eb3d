class OllamaShellError(Exception):
    """Base class for every error the agent reports to the user."""


class StartupUnavailable(OllamaShellError):
    """The chat service could not be reached while starting up."""


class EmptyModelList(OllamaShellError):
    """The chat service answered but has no models installed."""


class ChatRequestFailure(OllamaShellError):
    """Network-level failure talking to the chat service."""


class ChatProtocolError(OllamaShellError):
    """The chat service answered with an error or with an unusable body."""


class SpawnError(OllamaShellError):
    """The shell process could not be started."""
