"""Browser script runner

Runs declarative browser scripts as xyOps jobs:
- script_compiler: object / JSON / line-oriented scripts to typed steps
- step_executor: sequential step state machine
- locators: recorder selector strings to Playwright locators
- network_capture: capture rules for network responses
- job_runner: job lifecycle and entry point
"""

from .errors import JobInputError, ScriptRunnerError, StepExecutionError, StepValidationError
from .models import CaptureRule, OutputDocument, Step, parse_step
from .script_compiler import ScriptCompiler
from .step_executor import RunContext, StepExecutor
from .job_runner import JobRunner

__all__ = [
    "CaptureRule",
    "JobInputError",
    "JobRunner",
    "OutputDocument",
    "RunContext",
    "ScriptCompiler",
    "ScriptRunnerError",
    "Step",
    "StepExecutionError",
    "StepExecutor",
    "StepValidationError",
    "parse_step",
]
