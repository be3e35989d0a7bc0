# tests/conftest.py
import asyncio
import os
import sys
from io import StringIO
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

# Make the package importable without installation
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from browser_script_runner import step_executor
from browser_script_runner.config import Params
from browser_script_runner.models import OutputDocument
from browser_script_runner.network_capture import NetworkCaptureRouter
from browser_script_runner.reporting import XyReporter
from browser_script_runner.step_executor import RunContext


def make_locator(count=1):
    """Fake Playwright locator; .first returns itself."""
    locator = MagicMock()
    locator.count = AsyncMock(return_value=count)
    locator.click = AsyncMock()
    locator.dblclick = AsyncMock()
    locator.fill = AsyncMock()
    locator.hover = AsyncMock()
    locator.press = AsyncMock()
    locator.wait_for = AsyncMock()
    locator.first = locator
    return locator


def make_page(locator=None):
    """Fake Playwright page with async methods mocked."""
    locator = locator or make_locator()
    page = MagicMock()
    page.url = "https://example.com/"
    page.goto = AsyncMock()
    page.reload = AsyncMock()
    page.evaluate = AsyncMock(return_value=None)
    page.set_viewport_size = AsyncMock()
    page.wait_for_load_state = AsyncMock()
    page.inner_text = AsyncMock(return_value="")
    page.screenshot = AsyncMock(return_value=b"png")
    page.keyboard.down = AsyncMock()
    page.keyboard.up = AsyncMock()
    page.keyboard.press = AsyncMock()
    page.keyboard.insert_text = AsyncMock()
    page.mouse.wheel = AsyncMock()
    page.locator.return_value = locator
    page.get_by_label.return_value = locator
    page.get_by_text.return_value = locator
    return page


class FakeResponse:
    """Stand-in for playwright Response."""

    def __init__(self, url, body=None, status=200, content_type="application/json", fail=False, delay=0):
        self.url = url
        self.status = status
        self.headers = {"content-type": content_type} if content_type else {}
        self._body = body
        self._fail = fail
        self._delay = delay

    async def _read(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._fail:
            raise RuntimeError("body unavailable")
        return self._body

    async def json(self):
        return await self._read()

    async def text(self):
        return await self._read()


@pytest.fixture
def no_delay(monkeypatch):
    """Replace asyncio.sleep inside the step executor with a recording mock."""
    sleep = AsyncMock()
    monkeypatch.setattr(step_executor, "asyncio", SimpleNamespace(sleep=sleep))
    return sleep


@pytest.fixture
def make_context(tmp_path):
    """Factory for a RunContext wired to fakes. Must be called inside a running loop."""

    def factory(page=None, params=None, xy=True, ai=None, variables=None):
        stream = StringIO()
        output = OutputDocument()
        ctx = RunContext(
            params=params or Params(),
            page=page or make_page(),
            output=output,
            captures=NetworkCaptureRouter(output, tmp_path / "downloads"),
            reporter=XyReporter(xy, stream),
            ai=ai,
            variables={} if variables is None else variables,
        )
        ctx.stream = stream
        return ctx

    return factory
