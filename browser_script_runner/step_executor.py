"""
Step Executor

Runs compiled steps one at a time against a Playwright page:

    for each step:
        log "Step i/n: <description>"
        run the handler for the step's type
        report progress completed/n (xyOps jobs only)
        sleep for the inter-step delay

The first failing step aborts the run; there is no retry. Steps with no
handler are logged, counted as completed and skipped.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type

from playwright.async_api import Page

from .ai_executor import AIExecutor
from .config import Params
from .errors import StepExecutionError, StepValidationError
from .locators import ResolvedTarget, SelectorResolver
from .models import (
    ActionStep,
    CaptureStep,
    ChangeStep,
    ClickStep,
    DoubleClickStep,
    EvaluateStep,
    ExtractStep,
    KeyDownStep,
    KeyUpStep,
    NavigateStep,
    OutputDocument,
    ReloadStep,
    SetViewportStep,
    SleepStep,
    Step,
    TextStep,
    WaitForStep,
)
from .network_capture import NetworkCaptureRouter
from .reporting import XyReporter
from .variables import VariableInterpolator

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"\w+://\S+")
DEFAULT_WAIT_UNTIL = "load"
DEFAULT_WAIT_STATE = "visible"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass
class RunContext:
    """Everything a step handler may touch during one run."""

    params: Params
    page: Page
    output: OutputDocument
    captures: NetworkCaptureRouter
    reporter: XyReporter
    ai: Optional[AIExecutor] = None
    variables: Mapping[str, str] = field(default_factory=lambda: os.environ)

    def __post_init__(self):
        self.interpolator = VariableInterpolator(self.variables)
        self.selectors = SelectorResolver(self.page)


class StepExecutor:
    """Sequential state machine over a compiled step list."""

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.completed = 0
        self.handlers: Dict[Type[Step], Callable[[Any], Awaitable[None]]] = {
            NavigateStep: self._step_navigate,
            ReloadStep: self._step_reload,
            CaptureStep: self._step_capture,
            ActionStep: self._step_action,
            ExtractStep: self._step_extract,
            SetViewportStep: self._step_set_viewport,
            ClickStep: self._step_click,
            DoubleClickStep: self._step_double_click,
            ChangeStep: self._step_change,
            KeyDownStep: self._step_key_down,
            KeyUpStep: self._step_key_up,
            TextStep: self._step_text,
            EvaluateStep: self._step_evaluate,
            SleepStep: self._step_sleep,
            WaitForStep: self._step_wait_for,
        }

    async def run(self, steps: List[Step]) -> OutputDocument:
        """
        Execute all steps in order.

        Raises:
            StepValidationError: if there are no steps, or a step is invalid
            StepExecutionError: if a step does not achieve its goal
        """
        if not steps:
            raise StepValidationError("Cannot run script: No steps found.")

        total = len(steps)
        for idx, step in enumerate(steps):
            await self.run_step(step, idx + 1, total)

        return self.ctx.output

    async def run_step(self, step: Step, step_num: int, total: int) -> None:
        handler = self.handlers.get(type(step))
        if handler is None:
            logger.warning(f"Skipping unknown step type: {step.type} {json.dumps(step.data, default=str)}")
            self._complete(total)
            return

        logger.info(f"Step {step_num}/{total}: {step.describe()}")
        await handler(step)
        self._complete(total)

        if self.ctx.params.step_delay > 0:
            await asyncio.sleep(self.ctx.params.step_delay / 1000.0)

    def _complete(self, total: int) -> None:
        self.completed += 1
        self.ctx.reporter.progress(self.completed, total)

    def _target(self, step: Step) -> ResolvedTarget:
        return self.ctx.selectors.resolve_group(step.selectors, step.type)

    # Step handlers

    async def _step_navigate(self, step: NavigateStep) -> None:
        """step: { url, timeout?, waitUntil? }"""
        if not step.url or not isinstance(step.url, str) or not URL_PATTERN.fullmatch(step.url):
            raise StepValidationError(f"Navigate: Invalid URL: {step.url}", step.type)

        await self.ctx.page.goto(
            step.url,
            timeout=step.timeout or self.ctx.params.nav_timeout,
            wait_until=step.wait_until or DEFAULT_WAIT_UNTIL,
        )

    async def _step_reload(self, step: ReloadStep) -> None:
        """step: { timeout?, waitUntil? }"""
        await self.ctx.page.reload(
            timeout=step.timeout or self.ctx.params.nav_timeout,
            wait_until=step.wait_until or DEFAULT_WAIT_UNTIL,
        )

    async def _step_capture(self, step: CaptureStep) -> None:
        """step: { url, download?, pretty? }"""
        self.ctx.captures.add_rule(step.url, download=step.download, pretty=step.pretty)

    async def _step_action(self, step: ActionStep) -> None:
        """step: { prompt, timeout? }"""
        if not step.prompt:
            raise StepValidationError("Action: No prompt specified.", step.type)

        result = await self.ctx.ai.act(
            self.ctx.page,
            step.prompt,
            variables=self.ctx.variables,
            timeout=step.timeout or self.ctx.params.dom_timeout,
        )
        if not result or not result.success:
            description = result.action_description if result else None
            message = result.message if result else None
            raise StepExecutionError(f"Action failed: {description}: {message}")

    async def _step_extract(self, step: ExtractStep) -> None:
        """step: { prompt, timeout? }"""
        if not step.prompt:
            raise StepValidationError("Extract: No prompt specified.", step.type)

        result = await self.ctx.ai.extract(
            self.ctx.page,
            step.prompt,
            schema=None,
            timeout=step.timeout or self.ctx.params.dom_timeout,
        )
        if result is None:
            raise StepExecutionError(f"Extraction failed: {step.prompt}")

        self.ctx.output.add_extraction(step.prompt, result)

    async def _step_set_viewport(self, step: SetViewportStep) -> None:
        """step: { width, height }"""
        if not step.width or not step.height:
            raise StepValidationError("setViewport: width and/or height missing.", step.type)

        await self.ctx.page.set_viewport_size({"width": int(step.width), "height": int(step.height)})

    def _click_options(self, step: ClickStep) -> Dict[str, Any]:
        options: Dict[str, Any] = {"timeout": step.timeout or self.ctx.params.dom_timeout}
        # DevTools records offsetX/offsetY; Playwright takes position
        if _is_number(step.offset_x) and _is_number(step.offset_y):
            options["position"] = {"x": step.offset_x, "y": step.offset_y}
        return options

    async def _step_click(self, step: ClickStep) -> None:
        """step: { selectors, offsetX?, offsetY?, timeout? }"""
        target = self._target(step)
        options = self._click_options(step)
        locator = await target.locate()
        await locator.click(**options)

    async def _step_double_click(self, step: DoubleClickStep) -> None:
        """step: { selectors, offsetX?, offsetY?, timeout? }"""
        target = self._target(step)
        options = self._click_options(step)
        locator = await target.locate()
        await locator.dblclick(**options)

    async def _step_change(self, step: ChangeStep) -> None:
        """step: { selectors, value }"""
        target = self._target(step)
        value = self.ctx.interpolator.interpolate(step.value if step.value is not None else "")

        locator = await target.locate()
        await locator.fill(value, timeout=self.ctx.params.dom_timeout)

    async def _step_key_down(self, step: KeyDownStep) -> None:
        """step: { key }"""
        if not step.key:
            raise StepValidationError("keyDown: Missing key to hit.", step.type)
        await self.ctx.page.keyboard.down(step.key)

    async def _step_key_up(self, step: KeyUpStep) -> None:
        """step: { key }"""
        if not step.key:
            raise StepValidationError("keyUp: Missing key to release.", step.type)
        await self.ctx.page.keyboard.up(step.key)

    async def _step_text(self, step: TextStep) -> None:
        """step: { text } (or legacy { value })"""
        value = step.text if step.text is not None else step.value
        if value is None or value == "":
            raise StepValidationError("Text: Missing text to enter.", step.type)

        await self.ctx.page.keyboard.insert_text(self.ctx.interpolator.interpolate(value))

    async def _step_evaluate(self, step: EvaluateStep) -> None:
        """step: { script }"""
        if not step.script:
            raise StepValidationError("Evaluate: Missing script code to execute.", step.type)

        result = await self.ctx.page.evaluate(self.ctx.interpolator.interpolate(step.script))
        self.ctx.output.add_evaluation(step.script, result)

    async def _step_sleep(self, step: SleepStep) -> None:
        """step: { duration } in ms"""
        duration = step.duration
        if not isinstance(duration, int) or isinstance(duration, bool) or duration <= 0:
            raise StepValidationError("Sleep: Missing duration (ms) to sleep for.", step.type)

        await asyncio.sleep(duration / 1000.0)

    async def _step_wait_for(self, step: WaitForStep) -> None:
        """step: { selectors, state?, timeout? }"""
        target = self._target(step)
        locator = await target.locate()
        await locator.wait_for(
            state=step.state or DEFAULT_WAIT_STATE,
            timeout=step.timeout or self.ctx.params.dom_timeout,
        )
