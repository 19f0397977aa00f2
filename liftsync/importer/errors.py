"""Error types for the import pipeline.

Storage errors stay inside the store implementations. Step errors always
reach the caller of the orchestrator. Running out of time is reported as
ImportTimeoutError and is an expected outcome, not a failure.
"""


class ImportPipelineError(Exception):
    """Base exception for import pipeline errors."""


class StorageUnavailableError(ImportPipelineError):
    """Raised by store backends when the persisted store cannot be reached."""


class ConfigurationError(ImportPipelineError):
    """Raised when the credential needed to import is missing or invalid."""


class StepExecutionError(ImportPipelineError):
    """Raised when a step executor fails.

    Attributes:
        step: Name of the step that failed
    """

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"Step '{step}' failed: {message}")
        self.step = step


class ImportTimeoutError(ImportPipelineError):
    """Raised when the run is about to exceed its time budget."""


class PageNotFoundError(ImportPipelineError):
    """Raised by page fetchers when a page does not exist (end of collection)."""
