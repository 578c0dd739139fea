"""Extract affected source files from CI check output."""

import re
from typing import List

_EXT = r"(?:py|ts|tsx|js|jsx|go|rs)"

FILE_PATTERNS = [
    # pytest: tests/test_auth.py::test_login FAILED
    re.compile(rf"([\w\-/.]+\.{_EXT})::"),
    # TypeScript: src/components/Button.tsx(45,12): error TS2322
    re.compile(rf"([\w\-/.]+\.{_EXT})\(\d+,\d+\)"),
    # Python traceback: File "app/models/user.py", line 123
    re.compile(rf'File "([\w\-/.]+\.{_EXT})"'),
    # ESLint / mypy / ruff: src/app.ts:12:3 or app/models.py:4: error
    re.compile(rf"(?<![\w/.])([\w\-/.]+\.{_EXT}):\d+"),
]


def extract_files(output: str) -> List[str]:
    """Return unique file paths mentioned in check output, in first-seen order.

    Args:
        output: Raw text from a CI check run

    Returns:
        List of file paths
    """
    seen: dict[str, None] = {}
    for pattern in FILE_PATTERNS:
        for match in pattern.finditer(output or ""):
            seen.setdefault(match.group(1), None)
    return list(seen)
