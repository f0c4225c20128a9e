"""Exception hierarchy for the chat engine."""


class LopilotError(Exception):
    """Base class for all engine errors."""


class AvailabilityError(LopilotError):
    """A send cannot start; the user has to fix something first."""


class BackendUnavailableError(AvailabilityError):
    def __init__(self, message: str = "Ollama is not running or not installed. Please install Ollama from ollama.com."):
        super().__init__(message)


class NoModelsInstalledError(AvailabilityError):
    def __init__(self, message: str = "No models are installed. Please install a model of your choice in the Models tab."):
        super().__init__(message)


class InferenceError(LopilotError):
    """Transport or protocol failure while talking to the inference server."""
