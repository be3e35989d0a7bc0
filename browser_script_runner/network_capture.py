"""
Network Capture Router

Watches every response seen by the browser context and records those that
match a registered capture rule. Matching happens as each response event
arrives; reading bodies and filing payloads happens in a separate consumer
task fed by a queue, so captures keep network-arrival order and never block
the step that triggered the traffic.

Matched payloads are either embedded in the output ("response") or written
to the downloads directory with only the "filename" recorded.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, List, Optional, Tuple
from urllib.parse import urlsplit

from .errors import StepValidationError
from .models import Capture, CaptureRule, OutputDocument

logger = logging.getLogger(__name__)

SCHEME_HOST_PATTERN = re.compile(r"^\w+://[^/]+/")
UNSAFE_CHARS_PATTERN = re.compile(r"[^\w\-.]+")
EXTENSION_PATTERN = re.compile(r"\.\w+$")
CONTENT_SUBTYPE_PATTERN = re.compile(r"^\w+/(\w+)")


def capture_filename(url: str, content_type: Optional[str] = None) -> str:
    """
    Derive a filesystem-safe filename from a response URL.

    https://x.com/api/users/1 -> api_users_1 (+ ".json" for application/json)
    """
    name = SCHEME_HOST_PATTERN.sub("", url, count=1)
    name = re.sub(r"/$", "", name)
    name = UNSAFE_CHARS_PATTERN.sub("_", name).lower()

    if not EXTENSION_PATTERN.search(name) and content_type:
        match = CONTENT_SUBTYPE_PATTERN.match(content_type)
        if match:
            name += "." + match.group(1)

    if not name:
        # bare host: fall back to the host name
        name = UNSAFE_CHARS_PATTERN.sub("_", urlsplit(url).netloc).lower() or "response"

    return name


def serialize_payload(data: Any, pretty: bool = False, is_json: bool = False) -> str:
    """Text written to disk for a downloaded capture. JSON bodies stay JSON, scalars included."""
    if is_json or isinstance(data, (dict, list)):
        if pretty:
            return json.dumps(data, indent="\t") + "\n"
        return json.dumps(data, separators=(",", ":")) + "\n"
    return "" if data is None else str(data)


class NetworkCaptureRouter:
    """Routes matched network responses into the output document or onto disk."""

    def __init__(self, output: OutputDocument, downloads_dir: Path):
        self.output = output
        self.downloads_dir = Path(downloads_dir)
        self.rules: List[CaptureRule] = []
        self._queue: "asyncio.Queue[Optional[Tuple[Any, CaptureRule]]]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._closed = False

    def add_rule(self, url: Any, download: bool = False, pretty: bool = False) -> CaptureRule:
        """
        Register a capture rule for the rest of the run.

        Raises:
            StepValidationError: if url is missing or not a string
        """
        if not url or not isinstance(url, str):
            raise StepValidationError(f"Capture: Invalid match: {url}", "capture")
        rule = CaptureRule(url=url, download=bool(download), pretty=bool(pretty))
        self.rules.append(rule)
        return rule

    def match(self, url: str) -> Optional[CaptureRule]:
        """First registered rule whose url is a substring of the response url."""
        for rule in self.rules:
            if rule.matches(url):
                return rule
        return None

    def attach(self, context) -> None:
        """Subscribe to a Playwright browser context and start the consumer task."""
        context.on("response", self.on_response)
        self.start()

    def detach(self, context) -> None:
        context.remove_listener("response", self.on_response)

    def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    def on_response(self, response) -> None:
        """Response event callback: match now, process later in arrival order."""
        url = response.url
        logger.debug(f"Network Request [{response.status}] {url}")

        rule = self.match(url)
        if rule is None:
            return

        if self._closed:
            logger.warning(f"Capture stopped, skipping response [{response.status}] {url}")
            return

        logger.info(f"Request Captured [{response.status}] {url}")
        self._queue.put_nowait((response, rule))

    async def _consume(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                response, rule = item
                await self.handle(response, rule)
            except Exception as e:
                logger.error(f"Error processing captured response: {e}")
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """
        Wait until every matched response has been filed, then stop.

        Responses matched while earlier bodies are still being read are
        filed too; only responses arriving after the queue empties are skipped.
        """
        if self._consumer is None:
            self._closed = True
            return
        await self._queue.join()
        # no await between join() and closing, so nothing can slip in behind the marker
        self._closed = True
        self._queue.put_nowait(None)
        await self._consumer
        self._consumer = None

    async def read_body(self, response, is_json: bool) -> Any:
        """Read a response body as JSON or text."""
        if is_json:
            data = await response.json()
            logger.debug(f"JSON Captured: {json.dumps(data)}")
        else:
            data = await response.text()
            logger.debug(f"Text Captured: {data}")
        return data

    async def handle(self, response, rule: CaptureRule) -> Capture:
        """Read, route and record one matched response. A body read failure is logged and recorded as null."""
        url = response.url
        headers = dict(response.headers)
        capture = Capture(url=url, status=response.status, headers=headers)
        is_json = "application/json" in headers.get("content-type", "")

        try:
            data = await self.read_body(response, is_json)
        except Exception as e:
            logger.error(f"Error reading response body: {e}")
            self.output.add_capture(capture)
            return capture

        if rule.download:
            filename = capture_filename(url, headers.get("content-type"))
            self.downloads_dir.mkdir(parents=True, exist_ok=True)
            payload = serialize_payload(data, rule.pretty, is_json=is_json)
            (self.downloads_dir / filename).write_text(payload, encoding="utf-8")
            capture.filename = filename
            logger.debug(f"Capture saved to: {self.downloads_dir / filename}")
        else:
            capture.response = data

        self.output.add_capture(capture)
        return capture
