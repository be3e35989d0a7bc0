"""
Error types raised by the browser script runner.

Input and validation problems are separated from execution failures so the
job runner can report them, but every one of them aborts the run.
"""

from typing import Optional


class ScriptRunnerError(Exception):
    """Base class for all runner errors."""
    pass


class JobInputError(ScriptRunnerError):
    """Raised when the job document or its script cannot be parsed."""
    pass


class StepValidationError(ScriptRunnerError):
    """Raised when a step is missing required fields or cannot be targeted."""

    def __init__(self, message: str, step_type: Optional[str] = None):
        super().__init__(message)
        self.step_type = step_type


class StepExecutionError(ScriptRunnerError):
    """Raised when a step ran but did not achieve its goal."""
    pass
