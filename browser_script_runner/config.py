"""
Job and parameter parsing.

A job arrives as one JSON document:
{
  "xy": 1,
  "params": {
    "script": "navigate to https://example.com\\nextract the page title",
    "width": 1280,
    "height": 720,
    "video": "none"
  }
}
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .errors import JobInputError

DEFAULT_AI_MODEL = "gpt-4o-mini"

# name -> default, coerced with int(value or default)
INT_PARAMS = {
    "verbose": 0,
    "width": 1280,
    "height": 720,
    "domTimeout": 3000,
    "navTimeout": 30000,
    "stepDelay": 1000,
}

KNOWN_PARAMS = set(INT_PARAMS) | {
    "video",
    "scale",
    "ssl_cert_bypass",
    "locale",
    "ai_model",
    "ai_api_key",
    "ai_base_url",
    "ai_system_prompt",
    "ai_log_inference",
    "script",
}


FALSE_STRINGS = {"", "0", "false", "no", "off"}


def _to_bool(value: Any) -> bool:
    # form-style jobs send checkboxes as strings
    if isinstance(value, str):
        return value.strip().lower() not in FALSE_STRINGS
    return bool(value)


def _to_int(name: str, value: Any, default: int) -> int:
    try:
        return int(value or default)
    except (TypeError, ValueError):
        raise JobInputError(f"Parameter '{name}' must be an integer: {value!r}")


@dataclass
class Params:
    """Configuration for one run, with defaults applied."""

    verbose: int = 0
    width: int = 1280
    height: int = 720
    dom_timeout: int = 3000
    nav_timeout: int = 30000
    step_delay: int = 1000
    video: str = "none"
    scale: float = 1.0
    ssl_cert_bypass: bool = False
    locale: str = "en-US"
    ai_model: str = DEFAULT_AI_MODEL
    ai_api_key: Optional[str] = None
    ai_base_url: Optional[str] = None
    ai_system_prompt: Optional[str] = None
    ai_log_inference: bool = False
    script: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Params":
        if not isinstance(data, dict):
            raise JobInputError("Job params must be an object")

        ints = {name: _to_int(name, data.get(name), default) for name, default in INT_PARAMS.items()}

        try:
            scale = float(data.get("scale") or 1.0)
        except (TypeError, ValueError):
            raise JobInputError(f"Parameter 'scale' must be a number: {data.get('scale')!r}")

        return cls(
            verbose=ints["verbose"],
            width=ints["width"],
            height=ints["height"],
            dom_timeout=ints["domTimeout"],
            nav_timeout=ints["navTimeout"],
            step_delay=ints["stepDelay"],
            video=str(data.get("video") or "none").lower(),
            scale=scale,
            ssl_cert_bypass=_to_bool(data.get("ssl_cert_bypass")),
            locale=data.get("locale") or "en-US",
            ai_model=data.get("ai_model") or DEFAULT_AI_MODEL,
            ai_api_key=data.get("ai_api_key") or None,
            ai_base_url=data.get("ai_base_url") or None,
            ai_system_prompt=data.get("ai_system_prompt") or None,
            ai_log_inference=_to_bool(data.get("ai_log_inference")),
            script=data.get("script"),
            extra={k: v for k, v in data.items() if k not in KNOWN_PARAMS},
        )

    @property
    def records_video(self) -> bool:
        return self.video != "none"

    @property
    def keeps_video(self) -> bool:
        return self.video == "always"

    def to_dict(self) -> Dict[str, Any]:
        """Params in their job-document shape (API key masked)."""
        data = dict(self.extra)
        data.update({
            "verbose": self.verbose,
            "width": self.width,
            "height": self.height,
            "domTimeout": self.dom_timeout,
            "navTimeout": self.nav_timeout,
            "stepDelay": self.step_delay,
            "video": self.video,
            "scale": self.scale,
            "ssl_cert_bypass": self.ssl_cert_bypass,
            "locale": self.locale,
            "ai_model": self.ai_model,
            "ai_api_key": "***" if self.ai_api_key else None,
            "ai_base_url": self.ai_base_url,
            "ai_system_prompt": self.ai_system_prompt,
            "ai_log_inference": self.ai_log_inference,
            "script": self.script,
        })
        return data


@dataclass
class Job:
    """The top-level input unit."""

    params: Params
    xy: bool = False
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Job":
        if not isinstance(data, dict):
            raise JobInputError("Job must be a JSON object")
        if "params" not in data:
            raise JobInputError("Job is missing 'params'")
        return cls(params=Params.from_dict(data["params"]), xy=bool(data.get("xy")), raw=data)

    @classmethod
    def from_json(cls, text: str) -> "Job":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise JobInputError(f"Invalid job JSON: {e}") from e
        return cls.from_dict(data)
