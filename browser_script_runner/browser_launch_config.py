"""
Browser Launch Configuration

Playwright options for the headless Chromium session a job runs in:
- persistent profile directory kept between runs
- viewport, display scale and locale from job params
- downloads and optional video recording into the downloads directory
- container-friendly launch flags
"""

import glob
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import Params

logger = logging.getLogger(__name__)

PLAYWRIGHT_CHROMIUM_GLOB = "/ms-playwright/chromium-*/chrome-linux/chrome"


def get_base_browser_args(extra_args: Optional[List[str]] = None) -> List[str]:
    """
    Chromium flags for headless runs in containers.

    Args:
        extra_args: Additional custom arguments to include

    Returns:
        List of browser arguments
    """
    args = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--disable-background-networking",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-features=TranslateUI",
    ]

    if extra_args:
        args.extend(extra_args)

    env_args = os.environ.get("BROWSER_LAUNCH_ARGS", "").strip()
    if env_args:
        args.extend(env_args.split())
        logger.debug(f"Added browser args from BROWSER_LAUNCH_ARGS: {env_args}")

    return args


def find_chromium_executable() -> Optional[str]:
    """Playwright-managed Chromium from the container image, if installed there."""
    matches = sorted(glob.glob(PLAYWRIGHT_CHROMIUM_GLOB))
    return matches[0] if matches else None


def get_context_options(params: Params, downloads_dir: Path) -> Dict[str, Any]:
    """
    Options for chromium.launch_persistent_context().

    Args:
        params: Job parameters
        downloads_dir: Directory for downloads and video files

    Returns:
        Keyword arguments for launch_persistent_context (minus user_data_dir)
    """
    options = {
        "headless": True,
        "args": get_base_browser_args(),
        "viewport": {"width": params.width, "height": params.height},
        "device_scale_factor": params.scale,
        "ignore_https_errors": params.ssl_cert_bypass,
        "locale": params.locale,
        "accept_downloads": True,
        "downloads_path": str(downloads_dir),
    }

    executable = find_chromium_executable()
    if executable:
        options["executable_path"] = executable

    if params.records_video:
        options["record_video_dir"] = str(downloads_dir)
        options["record_video_size"] = {"width": params.width, "height": params.height}

    return options


def log_launch_config(options: Dict[str, Any]) -> None:
    logger.debug("Browser Launch Configuration:")
    for key in ("headless", "executable_path", "viewport", "device_scale_factor", "locale",
                "ignore_https_errors", "record_video_dir", "args"):
        if key in options:
            logger.debug(f"  {key}: {options[key]}")
