"""Classification of raw command output.

The router has no error channel: a rejected command answers with a text
line such as ``Error: Invalid parameter``, and in Japanese console mode with
``エラー``. Everything here turns that text into a tagged result so call sites
never test magic substrings themselves.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class ResponseKind(str, Enum):
    OK = "ok"
    DEVICE_ERROR = "device_error"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Classified:
    """Tagged classification of one command's output."""
    kind: ResponseKind
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.kind == ResponseKind.OK


# Error patterns that indicate command failure (must appear at line start)
ERROR_PATTERNS = [
    r"^%?\s*Error\b",
    r"^エラー",
    r"^入力エラー",
    r"^Invalid\b",
    r"^Command failed",
    r"^Permission denied",
    r"^Connection timeout",
    r"^Incomplete command",
    r"^Unknown command",
    r"^(?:[^\s\"]+\s+){0,4}already exists",
]

# Lines that say the referenced configuration does not exist (line start, at
# most an "Error:" label and a few unquoted words before the marker)
_LABEL = r"^(?:%?\s*Error:?\s*|(?:入力)?エラー[:：]?\s*)?"
NOT_FOUND_PATTERNS = [
    _LABEL + r"(?:[^\s\"]+\s+){0,4}not found\b",
    _LABEL + r"\S*見つかりません",
    r"^No such\b",
    _LABEL + r"(?:[^\s\"]+\s+){0,4}is not configured",
]

# Patterns that look like errors but are actually OK (statistics, etc.)
INFO_PATTERNS = [
    r"\d+\s+(input\s+|output\s+)?errors",
    r"errors,",
]


def classify_output(
    output: str,
    extra_error_markers: Iterable[str] = (),
) -> Classified:
    """Classify one command's raw output.

    Args:
        output: Text the device printed in response to the command
        extra_error_markers: Additional literal line prefixes treated as errors

    Returns:
        Classified with kind OK, NOT_FOUND or DEVICE_ERROR and the offending line
    """
    extra = tuple(marker for marker in extra_error_markers if marker)

    for line in output.split("\n"):
        line_stripped = line.strip()
        if not line_stripped:
            continue

        is_info = any(
            re.search(info_pat, line_stripped, re.IGNORECASE)
            for info_pat in INFO_PATTERNS
        )
        if is_info:
            continue

        if any(re.search(p, line_stripped, re.IGNORECASE) for p in NOT_FOUND_PATTERNS):
            return Classified(ResponseKind.NOT_FOUND, line_stripped)

        if extra and line_stripped.startswith(extra):
            return Classified(ResponseKind.DEVICE_ERROR, line_stripped)

        for pattern in ERROR_PATTERNS:
            if re.search(pattern, line_stripped, re.IGNORECASE):
                return Classified(ResponseKind.DEVICE_ERROR, line_stripped)

    return Classified(ResponseKind.OK)


def is_failure(output: str, extra_error_markers: Iterable[str] = ()) -> bool:
    """True when the output is anything but OK."""
    return not classify_output(output, extra_error_markers).ok
