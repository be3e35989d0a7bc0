"""Substitution of %NAME% placeholders from process environment values."""

import os
import re
from typing import Mapping, Optional

from .errors import StepExecutionError

PLACEHOLDER_PATTERN = re.compile(r"%(\w+)%")


class VariableInterpolator:
    """Replaces %NAME% placeholders with named values, failing on unknown names."""

    def __init__(self, variables: Optional[Mapping[str, str]] = None):
        self.variables = os.environ if variables is None else variables

    def interpolate(self, text) -> str:
        def replacer(match):
            name = match.group(1)
            value = self.variables.get(name)
            if not value:
                raise StepExecutionError(f"Environment variable not found: {name}")
            return str(value)

        return PLACEHOLDER_PATTERN.sub(replacer, str(text))

    def names_in(self, text) -> list:
        """Placeholder names referenced by text, in order of appearance."""
        return PLACEHOLDER_PATTERN.findall(str(text))
