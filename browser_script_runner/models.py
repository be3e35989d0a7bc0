"""
Data model for compiled scripts and run output.

Steps are a closed set of frozen dataclasses, one per step kind. Each kind
carries only the fields its handler reads; validation of those fields is
left to the handler so that a bad step fails when it is reached, not when
the script is compiled.

Script step format (same as the Chrome DevTools recorder export):
{
  "type": "click",
  "selectors": [["aria/Email Address"], ["#LoginEmail"]],
  "offsetX": 12,
  "offsetY": 8
}
"""

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional


# JSON key used for each attribute whose Python name differs
_JSON_KEYS = {
    "wait_until": "waitUntil",
    "offset_x": "offsetX",
    "offset_y": "offsetY",
}


def _format_selectors(selectors: Any) -> str:
    if not isinstance(selectors, list):
        return str(selectors)
    return ", ".join(
        ", ".join(str(s) for s in group) if isinstance(group, list) else str(group)
        for group in selectors
    )


@dataclass(frozen=True)
class Step:
    """Base class for compiled steps."""

    TYPE: ClassVar[str] = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        kwargs = {}
        for f in fields(cls):
            key = _JSON_KEYS.get(f.name, f.name)
            if key in data:
                kwargs[f.name] = data[key]
        return cls(**kwargs)

    @property
    def type(self) -> str:
        return self.TYPE

    def describe(self) -> str:
        return self.TYPE


@dataclass(frozen=True)
class NavigateStep(Step):
    TYPE: ClassVar[str] = "navigate"

    url: Any = None
    timeout: Optional[int] = None
    wait_until: Optional[str] = None

    def describe(self) -> str:
        return f"Navigating to: {self.url}"


@dataclass(frozen=True)
class ReloadStep(Step):
    TYPE: ClassVar[str] = "reload"

    timeout: Optional[int] = None
    wait_until: Optional[str] = None

    def describe(self) -> str:
        return "Reloading page."


@dataclass(frozen=True)
class CaptureStep(Step):
    TYPE: ClassVar[str] = "capture"

    url: Any = None
    download: bool = False
    pretty: bool = False

    def describe(self) -> str:
        return f"Capturing network requests for: {self.url}"


@dataclass(frozen=True)
class ActionStep(Step):
    TYPE: ClassVar[str] = "action"

    prompt: Optional[str] = None
    timeout: Optional[int] = None

    def describe(self) -> str:
        return f"Taking action: {self.prompt}"


@dataclass(frozen=True)
class ExtractStep(Step):
    TYPE: ClassVar[str] = "extract"

    prompt: Optional[str] = None
    timeout: Optional[int] = None

    def describe(self) -> str:
        return f"Extracting data: {self.prompt}"


@dataclass(frozen=True)
class SetViewportStep(Step):
    TYPE: ClassVar[str] = "setViewport"

    width: Optional[int] = None
    height: Optional[int] = None

    def describe(self) -> str:
        return f"Setting viewport size: {self.width}x{self.height}"


@dataclass(frozen=True)
class ClickStep(Step):
    TYPE: ClassVar[str] = "click"

    selectors: Any = None
    offset_x: Any = None
    offset_y: Any = None
    timeout: Optional[int] = None

    def describe(self) -> str:
        return f"Clicking on: {_format_selectors(self.selectors)}"


@dataclass(frozen=True)
class DoubleClickStep(ClickStep):
    TYPE: ClassVar[str] = "doubleClick"

    def describe(self) -> str:
        return f"Double-clicking on: {_format_selectors(self.selectors)}"


@dataclass(frozen=True)
class ChangeStep(Step):
    TYPE: ClassVar[str] = "change"

    selectors: Any = None
    value: Any = None

    def describe(self) -> str:
        return f"Changing form element: {_format_selectors(self.selectors)} to: {self.value}"


@dataclass(frozen=True)
class KeyDownStep(Step):
    TYPE: ClassVar[str] = "keyDown"

    key: Optional[str] = None

    def describe(self) -> str:
        return f"Pressing key: {self.key}"


@dataclass(frozen=True)
class KeyUpStep(Step):
    TYPE: ClassVar[str] = "keyUp"

    key: Optional[str] = None

    def describe(self) -> str:
        return f"Releasing key: {self.key}"


@dataclass(frozen=True)
class TextStep(Step):
    TYPE: ClassVar[str] = "text"

    text: Any = None
    value: Any = None  # legacy field name

    def describe(self) -> str:
        return f"Typing text: {self.text if self.text is not None else self.value}"


@dataclass(frozen=True)
class EvaluateStep(Step):
    TYPE: ClassVar[str] = "evaluate"

    script: Optional[str] = None

    def describe(self) -> str:
        return f"Evaluating JavaScript: {self.script}"


@dataclass(frozen=True)
class SleepStep(Step):
    TYPE: ClassVar[str] = "sleep"

    duration: Any = None

    def describe(self) -> str:
        return f"Sleeping for {self.duration}ms."


@dataclass(frozen=True)
class WaitForStep(Step):
    TYPE: ClassVar[str] = "waitFor"

    selectors: Any = None
    state: Optional[str] = None
    timeout: Optional[int] = None

    def describe(self) -> str:
        return f"Waiting for: {_format_selectors(self.selectors)}"


@dataclass(frozen=True)
class UnknownStep(Step):
    """A step whose type has no handler. Kept so it can be reported and skipped."""

    name: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return str(self.name)

    def describe(self) -> str:
        return f"Unknown step type: {self.name}"


STEP_TYPES = {
    cls.TYPE: cls
    for cls in (
        NavigateStep,
        ReloadStep,
        CaptureStep,
        ActionStep,
        ExtractStep,
        SetViewportStep,
        ClickStep,
        DoubleClickStep,
        ChangeStep,
        KeyDownStep,
        KeyUpStep,
        TextStep,
        EvaluateStep,
        SleepStep,
        WaitForStep,
    )
}


def parse_step(data: Any) -> Step:
    """Build a typed step from its JSON form."""
    if not isinstance(data, dict):
        return UnknownStep(name=None, data={"value": data})

    step_cls = STEP_TYPES.get(data.get("type"))
    if step_cls is None:
        return UnknownStep(name=data.get("type"), data=dict(data))
    return step_cls.from_dict(data)


@dataclass(frozen=True)
class CaptureRule:
    """URL substring filter plus routing policy for matched responses."""

    url: str
    download: bool = False
    pretty: bool = False

    def matches(self, response_url: str) -> bool:
        return self.url in response_url


@dataclass
class Capture:
    """One matched network response."""

    url: str
    status: int
    headers: Dict[str, str]
    response: Any = None
    filename: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"url": self.url, "status": self.status, "headers": self.headers}
        if self.filename is not None:
            result["filename"] = self.filename
        else:
            result["response"] = self.response
        return result


class OutputDocument:
    """
    Append-only result document.

    Keys appear only once something of that kind was recorded, in the order
    they were first used.
    """

    def __init__(self):
        self._data: Dict[str, List[Any]] = {}

    def add_extraction(self, prompt: str, result: Any) -> None:
        self._data.setdefault("extractions", []).append({"prompt": prompt, "result": result})

    def add_evaluation(self, script: str, result: Any) -> None:
        self._data.setdefault("evaluations", []).append({"script": script, "result": result})

    def add_capture(self, capture: Capture) -> None:
        self._data.setdefault("captures", []).append(capture.to_dict())

    def get(self, key: str) -> Optional[List[Any]]:
        return self._data.get(key)

    def to_dict(self) -> Dict[str, Any]:
        return {key: list(values) for key, values in self._data.items()}
