"""Custom exceptions for the Local Tool Orchestrator."""


class OrchestratorError(Exception):
    """Base class for every error the orchestrator reports."""

    kind = "error"


class ConfigError(OrchestratorError):
    """Raised when configuration is invalid or missing."""

    kind = "config"


class InferenceError(OrchestratorError):
    """Raised by an inference engine when it cannot advance the model."""

    kind = "inference"


class OllamaConnectionError(InferenceError):
    """Raised when unable to connect to the Ollama server."""
    pass


class OllamaModelError(InferenceError):
    """Raised when the requested model is not available."""
    pass


class GenerationFailure(OrchestratorError):
    """Raised when the generation loop cannot continue. Never retried."""

    kind = "generation"


class PromptTemplateError(OrchestratorError):
    """Raised when a prompt template fails to render."""

    kind = "template"


class ArgumentError(OrchestratorError):
    """Raised when one invocation's argument payload does not fit its schema."""

    kind = "argument"


class ProviderConnectionError(OrchestratorError):
    """Raised when a provider fails its connection handshake."""

    kind = "connection"


class NoProvidersError(OrchestratorError):
    """Raised when no configured provider could be connected."""

    kind = "no_providers"

    def __init__(self, message: str, failures: list | None = None):
        super().__init__(message)
        self.failures = list(failures or [])


class ActionNotFound(OrchestratorError):
    """Raised when an action name is not offered by any connected provider."""

    kind = "not_found"

    def __init__(self, name: str):
        super().__init__(f"Tool '{name}' not found on any connected server")
        self.name = name


class ExecutionError(OrchestratorError):
    """Raised when a resolved action fails while running or in transit."""

    kind = "execution"


class InputError(OrchestratorError):
    """Raised when the operator typed an unparseable command or argument."""

    kind = "input"
