"""
AI Executor

Natural-language browser actions and data extraction backed by an
OpenAI-compatible chat completions API.

- act(): snapshot the interactive elements on the page, ask the model for a
  single action on one of them, then perform it with Playwright.
- extract(): send the visible page text and a screenshot, and return whatever
  JSON value the model puts under "result".

%NAME% placeholders in model-chosen values are substituted locally, so
secret values never leave the process.
"""

import base64
import json
import logging
from dataclasses import dataclass
from itertools import count
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from openai import AsyncOpenAI
from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from .variables import VariableInterpolator

logger = logging.getLogger(__name__)

MAX_ELEMENTS = 300
MAX_PAGE_TEXT = 20000

ACT_ACTIONS = ("click", "fill", "press", "hover", "scroll", "none")

SNAPSHOT_JS = """
() => {
    const isVisible = (el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        if (parseFloat(style.opacity) === 0) return false;
        return rect.width > 0 && rect.height > 0;
    };

    const getLabel = (el) => {
        const candidates = [
            (el.innerText || '').trim(),
            el.getAttribute('aria-label') || '',
            el.getAttribute('placeholder') || '',
            el.getAttribute('title') || '',
            el.getAttribute('alt') || '',
            el.getAttribute('name') || '',
            (el.value || '').toString().trim(),
        ];
        const label = candidates.find(c => c.length > 0) || '';
        return label.length > 80 ? label.slice(0, 77) + '...' : label;
    };

    const nodes = document.querySelectorAll(
        'a[href], button, input, textarea, select, [role="button"], [role="link"], ' +
        '[role="checkbox"], [role="tab"], [role="menuitem"], [contenteditable="true"]'
    );
    const elements = [];
    let id = 0;
    for (const el of nodes) {
        if (!isVisible(el)) continue;
        if (el.tagName === 'INPUT' && (el.getAttribute('type') || '').toLowerCase() === 'hidden') continue;
        id += 1;
        el.setAttribute('data-agent-id', String(id));
        elements.push({
            id,
            tag: el.tagName.toLowerCase(),
            role: el.getAttribute('role'),
            type: el.getAttribute('type'),
            label: getLabel(el),
            disabled: !!el.disabled || el.getAttribute('aria-disabled') === 'true',
        });
    }
    return elements;
}
"""

ACT_SYSTEM_PROMPT = (
    "You operate a web browser for a user. You are given one instruction and the list of "
    "interactive elements currently visible on the page, each with a numeric id.\n"
    "Choose exactly one action that carries out the instruction and respond with JSON only:\n"
    "{\n"
    '  "action": "click|fill|press|hover|scroll|none",\n'
    '  "element_id": 1,\n'
    '  "value": "text to fill, key to press, or up/down for scroll",\n'
    '  "description": "short description of what you are doing"\n'
    "}\n"
    "Use %NAME% placeholders exactly as written when the instruction refers to them; never "
    "invent their values. If no element can satisfy the instruction, use action \"none\" and "
    "explain why in description."
)

EXTRACT_SYSTEM_PROMPT = (
    "You extract information from a web page. You are given the page's visible text and a "
    "screenshot. Respond with JSON only, of the form {\"result\": <extracted value>}. The "
    "value may be any JSON type. Use {\"result\": null} if the information is not present."
)


@dataclass
class ActOutcome:
    """Result of one natural-language action."""

    success: bool
    message: str = ""
    action_description: str = ""


def normalize_model_name(model: str) -> str:
    """Drop an "openai/" provider prefix; other prefixes are kept for gateways that route on them."""
    if model.startswith("openai/"):
        return model[len("openai/"):]
    return model


def format_elements(elements: List[Dict[str, Any]]) -> str:
    lines = []
    for el in elements[:MAX_ELEMENTS]:
        kind = el.get("role") or el.get("tag")
        if el.get("type"):
            kind = f"{kind}[{el['type']}]"
        disabled = " [DISABLED]" if el.get("disabled") else ""
        lines.append(f"[{el['id']}] {kind}: \"{el.get('label', '')}\"{disabled}")
    return "\n".join(lines) or "(no interactive elements)"


class AIExecutor:
    """OpenAI-backed act/extract service for a Playwright page."""

    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        system_prompt: Optional[str] = None,
        inference_log_dir: Optional[Path] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = normalize_model_name(model)
        self.system_prompt = system_prompt
        self.inference_log_dir = Path(inference_log_dir) if inference_log_dir else None
        self._inference_counter = count(1)

        self.api_key = api_key
        self.base_url = base_url

        # LLM client (lazy-initialized when needed)
        self.client = client

    def _ensure_client(self) -> AsyncOpenAI:
        """Create the API client on first use, so scripts without AI steps need no key."""
        if self.client is None:
            client_kwargs = {"api_key": self.api_key} if self.api_key else {}
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            self.client = AsyncOpenAI(**client_kwargs)
        return self.client

    def _system_message(self, instructions: str) -> Dict[str, str]:
        content = instructions
        if self.system_prompt:
            content = f"{self.system_prompt}\n\n{instructions}"
        return {"role": "system", "content": content}

    def _log_inference(self, kind: str, messages: List[Dict[str, Any]], output: str) -> None:
        if not self.inference_log_dir:
            return
        self.inference_log_dir.mkdir(parents=True, exist_ok=True)
        path = self.inference_log_dir / f"{next(self._inference_counter):04d}_{kind}.json"
        record = {"kind": kind, "model": self.model, "messages": messages, "output": output}
        path.write_text(json.dumps(record, indent="\t", default=str) + "\n", encoding="utf-8")

    async def _complete_json(self, kind: str, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        response = await self._ensure_client().chat.completions.create(
            model=self.model,
            temperature=0,
            response_format={"type": "json_object"},
            messages=messages,
        )
        content = response.choices[0].message.content or ""
        self._log_inference(kind, messages, content)
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.error(f"Model returned invalid JSON: {content}")
            raise
        return data if isinstance(data, dict) else {}

    async def act(
        self,
        page: Page,
        prompt: str,
        variables: Optional[Mapping[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> ActOutcome:
        """
        Perform one natural-language instruction on the page.

        Args:
            page: Playwright page to act on
            prompt: The instruction, which may reference %NAME% placeholders
            variables: Values for placeholders (defaults to the process environment)
            timeout: Timeout in ms for the Playwright action

        Returns:
            ActOutcome; success is False when the model finds nothing to do or the action fails
        """
        interpolator = VariableInterpolator(variables)
        elements = await page.evaluate(SNAPSHOT_JS)

        user_prompt = f"Instruction: {prompt}\n\nInteractive elements:\n{format_elements(elements)}"
        placeholders = interpolator.names_in(prompt)
        if placeholders:
            user_prompt += "\n\nAvailable placeholders: " + ", ".join(f"%{name}%" for name in placeholders)

        decision = await self._complete_json("act", [
            self._system_message(ACT_SYSTEM_PROMPT),
            {"role": "user", "content": user_prompt},
        ])

        action = str(decision.get("action") or "none").lower()
        element_id = decision.get("element_id")
        value = decision.get("value")
        description = decision.get("description") or f"{action} on element {element_id}"
        logger.debug(f"AI action decision: {json.dumps(decision)}")

        if action not in ACT_ACTIONS or action == "none":
            return ActOutcome(False, f"No action taken for: {prompt}", description)

        if action in ("click", "fill", "hover") and element_id is None:
            return ActOutcome(False, f"Model chose '{action}' without an element", description)

        locator = page.locator(f'[data-agent-id="{element_id}"]') if element_id is not None else None

        try:
            if action == "click":
                await locator.click(timeout=timeout)
            elif action == "hover":
                await locator.hover(timeout=timeout)
            elif action == "fill":
                await locator.fill(interpolator.interpolate(value if value is not None else ""), timeout=timeout)
            elif action == "press":
                key = interpolator.interpolate(value or "Enter")
                if locator is not None:
                    await locator.press(key, timeout=timeout)
                else:
                    await page.keyboard.press(key)
            elif action == "scroll":
                delta = -600 if str(value).lower() == "up" else 600
                await page.mouse.wheel(0, delta)
        except PlaywrightTimeoutError as e:
            return ActOutcome(False, str(e), description)

        return ActOutcome(True, "Action completed", description)

    async def extract(
        self,
        page: Page,
        prompt: str,
        schema: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None,
    ) -> Any:
        """
        Extract data from the page.

        Args:
            page: Playwright page to read
            prompt: What to extract
            schema: Optional JSON schema for the result; None means any shape
            timeout: Time in ms to wait for the DOM to settle first

        Returns:
            The extracted value, or None if nothing was found
        """
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=timeout)
        except PlaywrightTimeoutError:
            logger.debug("DOM did not settle before extraction, continuing")

        page_text = (await page.inner_text("body"))[:MAX_PAGE_TEXT]
        screenshot_b64 = base64.b64encode(await page.screenshot()).decode("utf-8")

        instructions = f"{prompt}\n\nPage URL: {page.url}\n\nVisible text:\n{page_text}"
        if schema:
            instructions += f"\n\nThe result must match this JSON schema:\n{json.dumps(schema)}"

        data = await self._complete_json("extract", [
            self._system_message(EXTRACT_SYSTEM_PROMPT),
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": instructions},
                    {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{screenshot_b64}"}},
                ],
            },
        ])
        return data.get("result")
