"""
Script Compiler

Normalizes the three accepted script encodings into a list of typed steps:

1. An object with a "steps" list (used as-is)
2. JSON text of such an object
3. Line-oriented instructions, one step per line:

    # comments and blank lines are ignored
    navigate to https://example.com/login
    capture api/session
    type %USERNAME% into the email field
    evaluate document.title
    sleep for 2000
    extract the account balance

Lines are matched against a keyword rule table in order; the first rule that
matches wins and any other line becomes an AI "action" step.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import JobInputError
from .models import Step, parse_step

JSON_DOCUMENT_PATTERN = re.compile(r"^\{[\s\S]+\}$")
INSTRUCTION_PATTERN = re.compile(r"^\w")

# (pattern, builder) pairs; builders receive the match and the full line
LINE_RULES: List[Tuple[re.Pattern, Callable[[re.Match, str], Dict[str, Any]]]] = [
    (
        re.compile(r"^navigate:?\s+(to\s+)?(\S+)$", re.IGNORECASE),
        lambda m, line: {"type": "navigate", "url": m.group(2)},
    ),
    (
        re.compile(r"^capture:?\s+(\S+)$", re.IGNORECASE),
        lambda m, line: {"type": "capture", "url": m.group(1)},
    ),
    (
        re.compile(r"^extract:?\s+", re.IGNORECASE),
        lambda m, line: {"type": "extract", "prompt": line},
    ),
    (
        re.compile(r"^evaluate:?\s+(.+)$", re.IGNORECASE),
        lambda m, line: {"type": "evaluate", "script": m.group(1)},
    ),
    (
        re.compile(r"^sleep:?\s+(for\s+)?(\d+)$", re.IGNORECASE),
        lambda m, line: {"type": "sleep", "duration": int(m.group(2))},
    ),
]


def parse_line(line: str) -> Optional[Dict[str, Any]]:
    """Parse one instruction line into its JSON step form (None for blanks/comments)."""
    line = line.strip()
    if not INSTRUCTION_PATTERN.match(line):
        return None

    for pattern, build in LINE_RULES:
        match = pattern.match(line)
        if match:
            return build(match, line)

    return {"type": "action", "prompt": line}


def parse_text_script(text: str) -> Dict[str, Any]:
    """Convert line-oriented instructions into a script object."""
    steps = []
    for line in text.strip().split("\n"):
        step = parse_line(line)
        if step is not None:
            steps.append(step)
    return {"steps": steps}


def normalize_script(raw: Any) -> Dict[str, Any]:
    """
    Bring any accepted script encoding into object form.

    Raises:
        JobInputError: if the script looks like JSON but does not parse
    """
    if isinstance(raw, dict):
        return raw

    if raw is None:
        return {"steps": []}

    text = str(raw)
    if JSON_DOCUMENT_PATTERN.match(text.strip()):
        try:
            script = json.loads(text)
        except json.JSONDecodeError as e:
            raise JobInputError(f"Invalid script JSON: {e}") from e
        if not isinstance(script, dict):
            raise JobInputError("Script JSON must be an object")
        return script

    return parse_text_script(text)


def compile_steps(script: Dict[str, Any]) -> List[Step]:
    steps = script.get("steps") or []
    if not isinstance(steps, list):
        raise JobInputError("Script 'steps' must be a list")
    return [parse_step(step) for step in steps]


class ScriptCompiler:
    """Compiles a job's script parameter into typed steps."""

    def compile(self, raw: Any) -> List[Step]:
        return compile_steps(normalize_script(raw))

    def compile_params(self, params) -> List[Step]:
        """
        Compile params.script, replacing JSON text with the parsed object.

        Line-oriented scripts are left as text.
        """
        script = normalize_script(params.script)
        if isinstance(params.script, str) and JSON_DOCUMENT_PATTERN.match(params.script.strip()):
            params.script = script
        return compile_steps(script)
