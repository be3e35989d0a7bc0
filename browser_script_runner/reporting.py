"""
xyOps job protocol.

Machine-readable lines written to stdout, one JSON object per line:
    {"xy": 1, "progress": 0.25}
    {"xy": 1, "code": 0, "description": "Success", "data": {...}, "files": ["downloads/*"]}
"""

import json
import sys
from typing import Any, Dict, List, Optional, TextIO

RESULT_FILES = ["downloads/*"]


class XyReporter:
    """Writes protocol lines when the job opted in with "xy": 1."""

    def __init__(self, enabled: bool, stream: Optional[TextIO] = None):
        self.enabled = enabled
        self.stream = stream

    def _emit(self, payload: Dict[str, Any]) -> None:
        if not self.enabled:
            return
        stream = self.stream or sys.stdout
        stream.write(json.dumps(payload, default=str) + "\n")
        stream.flush()

    def progress(self, completed: int, total: int) -> None:
        self._emit({"xy": 1, "progress": completed / total})

    def success(self, data: Dict[str, Any], files: Optional[List[str]] = None) -> None:
        self._emit({"xy": 1, "code": 0, "description": "Success", "data": data, "files": files or RESULT_FILES})

    def failure(self, description: str, data: Dict[str, Any], files: Optional[List[str]] = None) -> None:
        self._emit({"xy": 1, "code": 1, "description": description, "data": data, "files": files or RESULT_FILES})
