#!/usr/bin/env python3
"""
Browser Script Job Runner

Runs one xyOps job: reads the job JSON from stdin, compiles its script,
executes the steps in a headless Chromium session and reports the result.

Usage:
    echo '{"xy": 1, "params": {"script": "navigate to https://example.com"}}' | browser-script-runner

Outputs (stdout, only when the job has "xy": 1):
    {"xy": 1, "progress": 0.5}
    {"xy": 1, "code": 0, "description": "Success", "data": {...}, "files": ["downloads/*"]}

Human-readable logs go to stderr. Exit status is 1 on any fatal error.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import tarfile
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from playwright.async_api import BrowserContext, Page, Playwright, async_playwright

from .ai_executor import AIExecutor
from .browser_launch_config import get_context_options, log_launch_config
from .config import Job, Params
from .errors import StepValidationError
from .models import OutputDocument, Step
from .network_capture import NetworkCaptureRouter
from .reporting import XyReporter
from .script_compiler import ScriptCompiler
from .step_executor import RunContext, StepExecutor

logger = logging.getLogger(__name__)

DOWNLOADS_DIR = "downloads"
PROFILE_DIR = "profile"
INFERENCE_LOG_DIR = "inference_summary"
INFERENCE_ARCHIVE = "inference_summary.tar.gz"


def configure_logging(verbose: int = 0) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)


class JobRunner:
    """Owns the lifecycle of a single job: one process, one page session."""

    def __init__(self, workdir: Optional[Path] = None, stdout=None):
        self.workdir = Path(workdir) if workdir else Path.cwd()
        self.downloads_dir = self.workdir / DOWNLOADS_DIR
        self.profile_dir = self.workdir / PROFILE_DIR
        self.inference_dir = self.workdir / INFERENCE_LOG_DIR
        self.stdout = stdout

        self.job: Optional[Job] = None
        self.params: Optional[Params] = None
        self.reporter = XyReporter(False, stdout)
        self.output = OutputDocument()
        self.steps: List[Step] = []

        # Playwright objects (initialized in _init_browser)
        self.playwright: Optional[Playwright] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.captures: Optional[NetworkCaptureRouter] = None

    async def execute(self, job_text: str) -> int:
        """
        Run the job and report the outcome.

        Returns:
            Process exit status (0 success, 1 failure)
        """
        try:
            await self.run(job_text)
            return 0
        except Exception as e:
            await self.fail(e)
            return 1

    async def run(self, job_text: str) -> None:
        job = self.job = Job.from_json(job_text)
        params = self.params = job.params
        self.reporter = XyReporter(job.xy, self.stdout)

        configure_logging(params.verbose)
        logger.debug(f"Job Parameters: {json.dumps(params.to_dict(), default=str)}")

        self.downloads_dir.mkdir(parents=True, exist_ok=True)

        if params.verbose >= 2:
            self._dump_json(self.downloads_dir / "job.json", job.raw)
            self._dump_json(self.downloads_dir / "env.json", dict(os.environ))

        self.steps = ScriptCompiler().compile_params(params)
        if not self.steps:
            raise StepValidationError("Cannot run script: No steps found.")

        await self._init_browser()

        ctx = RunContext(
            params=params,
            page=self.page,
            output=self.output,
            captures=self.captures,
            reporter=self.reporter,
            ai=self._create_ai_executor(),
        )
        await StepExecutor(ctx).run(self.steps)
        await self.finish()

    def _create_ai_executor(self) -> AIExecutor:
        params = self.params
        return AIExecutor(
            model=params.ai_model,
            api_key=params.ai_api_key,
            base_url=params.ai_base_url,
            system_prompt=params.ai_system_prompt,
            inference_log_dir=self.inference_dir if params.ai_log_inference else None,
        )

    @staticmethod
    def _dump_json(path: Path, data) -> None:
        path.write_text(json.dumps(data, indent="\t", default=str) + "\n", encoding="utf-8")

    async def _init_browser(self) -> None:
        """Launch Chromium with the persistent profile and start capturing responses."""
        logger.info("Initializing browser session...")
        params = self.params

        options = get_context_options(params, self.downloads_dir)
        log_launch_config(options)

        self.playwright = await async_playwright().start()
        self.context = await self.playwright.chromium.launch_persistent_context(
            str(self.profile_dir),
            **options
        )

        self.captures = NetworkCaptureRouter(self.output, self.downloads_dir)
        self.captures.attach(self.context)

        self.page = self.context.pages[0] if self.context.pages else await self.context.new_page()
        self.page.set_default_timeout(params.dom_timeout)
        self.page.set_default_navigation_timeout(params.nav_timeout)

    async def _video_path(self) -> Optional[Path]:
        if not self.params or not self.params.records_video or not self.page or not self.page.video:
            return None
        return Path(await self.page.video.path())

    async def _close_browser(self) -> None:
        if self.captures:
            await self.captures.drain()
            if self.context:
                self.captures.detach(self.context)
        if self.context:
            await self.context.close()
            self.context = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None

    def _discard_video(self, video_path: Optional[Path]) -> None:
        """Delete the recording unless the job asked to always keep it."""
        if not video_path or self.params.keeps_video:
            return
        try:
            video_path.unlink()
        except OSError as e:
            logger.warning(f"Failed to delete video file: {e}")

    def archive_inference_log(self) -> None:
        """Tar up the inference log directory into downloads, if logging was requested."""
        if not self.params or not self.params.ai_log_inference:
            return
        if not self.inference_dir.exists():
            return

        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        archive = self.downloads_dir / INFERENCE_ARCHIVE
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(self.inference_dir, arcname=INFERENCE_LOG_DIR)
        logger.debug(f"Inference log archived to: {archive}")

    async def finish(self) -> None:
        video_path = await self._video_path()

        await self._close_browser()
        self._discard_video(video_path)
        self.archive_inference_log()

        logger.info("Completed all steps.")
        self.reporter.success(self.output.to_dict())

    async def fail(self, err: Exception) -> None:
        """Top-level error path: best-effort cleanup, then report the partial output."""
        logger.error(f"Error: {err}", exc_info=err)

        video_path = None
        try:
            video_path = await self._video_path()
        except Exception as e:
            logger.debug(f"Could not read video path: {e}")

        try:
            await self._close_browser()
        except Exception as e:
            logger.debug(f"Error during cleanup: {e}")

        if self.params:
            self._discard_video(video_path)

        try:
            self.archive_inference_log()
        except Exception as e:
            logger.warning(f"Failed to archive inference log: {e}")

        self.reporter.failure(str(err) or type(err).__name__, self.output.to_dict())


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Run a browser automation script as an xyOps job")
    parser.add_argument("--job", help="Path to job JSON file (default: read from stdin)")
    parser.add_argument("--workdir", help="Directory for downloads/, profile/ and inference logs")
    args = parser.parse_args(argv)

    configure_logging()
    load_dotenv()

    if args.job:
        with open(args.job, "r") as f:
            job_text = f.read()
    else:
        job_text = sys.stdin.read()

    runner = JobRunner(workdir=Path(args.workdir) if args.workdir else None)
    return await runner.execute(job_text)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
