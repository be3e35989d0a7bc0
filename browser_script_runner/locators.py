"""
Selector Resolution

Maps raw selector strings, as exported by the Chrome DevTools recorder, to
Playwright locators.

Supported syntaxes (checked in this order):
- pierce/...        prefix stripped, remainder classified normally
- aria/<label>      page.get_by_label(label)
- text/<text>       page.get_by_text(text, exact=False)
- xpath/<expr>      page.locator("xpath=//...")
- //... or (//...   page.locator("xpath=...")
- a >>> b           page.locator("a >> b")
- anything else     page.locator(selector)

A step's "selectors" field is a list of candidate groups:
    "selectors": [["aria/Email Address"], ["#LoginEmail"], ["xpath///*[@id=\\"LoginEmail\\"]"]]
Only the first string of each group is used. Groups become an ordered chain of
strategies that is not evaluated until the step acts on the target.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from playwright.async_api import Locator, Page

from .errors import StepValidationError

logger = logging.getLogger(__name__)

PIERCE_PREFIX = "pierce/"
ARIA_PREFIX = "aria/"
TEXT_PREFIX = "text/"
XPATH_PREFIX_PATTERN = re.compile(r"^xpath/+")

STRATEGY_LABEL = "label"
STRATEGY_TEXT = "text"
STRATEGY_XPATH = "xpath"
STRATEGY_CSS = "css"


@dataclass(frozen=True)
class SelectorStrategy:
    """One classified selector: how to look the element up, and with what value."""

    strategy: str
    value: str
    raw: str

    def bind(self, page: Page) -> Locator:
        """Create the (lazy) Playwright locator for this strategy."""
        if self.strategy == STRATEGY_LABEL:
            return page.get_by_label(self.value)
        if self.strategy == STRATEGY_TEXT:
            return page.get_by_text(self.value, exact=False)
        if self.strategy == STRATEGY_XPATH:
            return page.locator(f"xpath={self.value}")
        return page.locator(self.value)


def classify_selector(raw_selector: Any) -> Optional[SelectorStrategy]:
    """
    Classify a single raw selector string.

    Returns:
        The strategy to use, or None when the selector cannot target anything
        (empty or wildcard aria/text selectors, non-string input).
    """
    if not raw_selector or not isinstance(raw_selector, str):
        return None

    raw = raw_selector
    selector = raw_selector

    # Shadow-boundary semantics are dropped; the rest is classified as usual
    if selector.startswith(PIERCE_PREFIX):
        selector = selector[len(PIERCE_PREFIX):]

    if selector.startswith(ARIA_PREFIX):
        name = selector[len(ARIA_PREFIX):].strip()
        if not name or name == "*":
            return None
        return SelectorStrategy(STRATEGY_LABEL, name, raw)

    if selector.startswith(TEXT_PREFIX):
        text = selector[len(TEXT_PREFIX):]
        # The recorder emits text/* as a wildcard
        if not text or text == "*":
            return None
        return SelectorStrategy(STRATEGY_TEXT, text, raw)

    if selector.startswith("xpath/"):
        return SelectorStrategy(STRATEGY_XPATH, XPATH_PREFIX_PATTERN.sub("//", selector, count=1), raw)

    if selector.startswith("//") or selector.startswith("(//"):
        return SelectorStrategy(STRATEGY_XPATH, selector, raw)

    if ">>>" in selector:
        return SelectorStrategy(STRATEGY_CSS, selector.replace(">>>", ">>"), raw)

    return SelectorStrategy(STRATEGY_CSS, selector, raw)


class ResolvedTarget:
    """
    Ordered chain of selector strategies for one logical UI target.

    Nothing touches the page until locate() is awaited by the consuming
    operation. At that point the first strategy that currently matches an
    element wins; if none match yet, a combined locator is returned so the
    operation's own auto-waiting can pick up whichever appears first.
    """

    def __init__(self, page: Page, strategies: List[SelectorStrategy]):
        if not strategies:
            raise ValueError("ResolvedTarget needs at least one strategy")
        self.page = page
        self.strategies = list(strategies)

    def combined(self) -> Locator:
        locator = self.strategies[0].bind(self.page)
        for strategy in self.strategies[1:]:
            locator = locator.or_(strategy.bind(self.page))
        return locator.first

    async def locate(self) -> Locator:
        for strategy in self.strategies:
            locator = strategy.bind(self.page)
            if await locator.count() > 0:
                logger.debug(f"Selector matched: {strategy.raw}")
                return locator.first
        return self.combined()

    def __repr__(self) -> str:
        return f"ResolvedTarget({[s.raw for s in self.strategies]})"


class SelectorResolver:
    """Builds ResolvedTargets from recorder selector groups."""

    def __init__(self, page: Page):
        self.page = page

    def resolve_one(self, raw_selector: Any) -> Optional[ResolvedTarget]:
        strategy = classify_selector(raw_selector)
        if strategy is None:
            return None
        return ResolvedTarget(self.page, [strategy])

    def classify_group(self, selectors: Any, step_type: str = "unknown") -> List[SelectorStrategy]:
        """
        Classify the first candidate of each group.

        Raises:
            StepValidationError: if selectors is not a list, or no group yields a strategy
        """
        if not selectors or not isinstance(selectors, list):
            raise StepValidationError(f"Step of type '{step_type}' has no selectors", step_type)

        strategies = []
        for group in selectors:
            if not isinstance(group, list) or len(group) == 0:
                continue
            strategy = classify_selector(group[0])
            if strategy is not None:
                strategies.append(strategy)

        if not strategies:
            raise StepValidationError(f"Could not build any locator for step type: {step_type}", step_type)

        return strategies

    def resolve_group(self, selectors: Any, step_type: str = "unknown") -> ResolvedTarget:
        return ResolvedTarget(self.page, self.classify_group(selectors, step_type))
