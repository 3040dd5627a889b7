"""Format-variant tables for recovering entities from configuration dumps.

A domain describes its lines as an ordered list of LineFormat entries. Each
entry has a cheap ``prefix`` anchor and a full ``pattern``. For every logical
line the table tries its formats in order and hands the first full match to
that format's extractor. A line whose prefix is recognized but that no format
can decode is a parse error; a line no prefix recognizes is somebody else's
configuration and is skipped.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterator, Optional

from ..errors import ParseFormatError

logger = logging.getLogger(__name__)

DEFAULT_TERMINAL_WIDTH = 80

# Characters that can only start a wrapped remainder, never a command
CONTINUATION_START = ("=", ",")
_NUMBER_CONTINUATION = re.compile(r"^\d")


class ParseDrafts:
    """Field dictionaries collected per identity while lines are parsed."""

    def __init__(self):
        self._drafts: dict[Hashable, dict[str, Any]] = {}

    def draft(self, key: Hashable) -> dict[str, Any]:
        """Get (or start) the draft for an identity."""
        return self._drafts.setdefault(key, {})

    def append(self, key: Hashable, field_name: str, value: Any) -> None:
        self.draft(key).setdefault(field_name, []).append(value)

    def items(self) -> Iterator[tuple[Hashable, dict[str, Any]]]:
        return iter(self._drafts.items())

    def __len__(self) -> int:
        return len(self._drafts)


Extractor = Callable[[re.Match, ParseDrafts], None]


@dataclass(frozen=True)
class LineFormat:
    """One accepted textual form of a configuration line."""
    name: str
    prefix: re.Pattern
    pattern: re.Pattern
    extract: Extractor
    variant: str = "current"


def line_format(
    name: str,
    prefix: str,
    pattern: str,
    extract: Extractor,
    variant: str = "current",
) -> LineFormat:
    """Compile a LineFormat from regex source strings (case-insensitive)."""
    return LineFormat(
        name=name,
        prefix=re.compile(prefix, re.IGNORECASE),
        pattern=re.compile(pattern, re.IGNORECASE),
        extract=extract,
        variant=variant,
    )


def unwrap_lines(
    raw: str,
    width: int = DEFAULT_TERMINAL_WIDTH,
    starts_command: Optional[Callable[[str], bool]] = None,
) -> list[str]:
    """Split a dump into logical lines, undoing terminal wrapping.

    A physical line is glued onto the previous one when:

    - it starts with ``=`` or ``,`` (joined as-is)
    - it starts with a digit, since no command does; long number lists such
      as filter lists wrap this way. Without leading whitespace after a line
      ending in a digit the wrap split a number, so no space is inserted.
    - the previous line was exactly the terminal width (a hard wrap in the
      middle of a token). A width of 0 disables this rule. A line that
      ``starts_command`` recognizes always starts a new logical line.
    """
    logical: list[str] = []
    previous_full = False
    previous_spaced = False

    for physical in raw.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        text = physical.rstrip()
        if not text.strip():
            previous_full = previous_spaced = False
            continue

        stripped = text.strip()
        if previous_full and starts_command is not None and starts_command(stripped):
            previous_full = False
        if logical and previous_full:
            spaced = previous_spaced or physical[:1].isspace()
            logical[-1] += f" {stripped}" if spaced else stripped
        elif logical and stripped.startswith(CONTINUATION_START):
            logical[-1] += stripped
        elif logical and _NUMBER_CONTINUATION.match(stripped):
            split_number = logical[-1][-1:].isdigit() and text[0].isdigit()
            logical[-1] += stripped if split_number else f" {stripped}"
        else:
            logical.append(stripped)

        previous_full = width > 0 and len(physical) == width
        previous_spaced = physical[-1:].isspace()

    return [line for line in logical if not line.startswith("#")]


class FormatTable:
    """Ordered format variants for one domain type."""

    def __init__(self, domain: str, formats: list[LineFormat]):
        self.domain = domain
        self.formats = list(formats)

    def parse(self, raw: str, width: int = DEFAULT_TERMINAL_WIDTH) -> ParseDrafts:
        """Run every logical line of ``raw`` through the table.

        Raises:
            ParseFormatError: If a recognized line cannot be decoded
        """
        drafts = ParseDrafts()
        matched = 0
        for line in unwrap_lines(raw, width, self.starts_command):
            if self.parse_line(line, drafts):
                matched += 1
        logger.debug(f"{self.domain}: {matched} lines matched, {len(drafts)} entities")
        return drafts

    def starts_command(self, line: str) -> bool:
        """True when a format's prefix anchors at the start of ``line``."""
        return any(fmt.prefix.match(line) for fmt in self.formats)

    def parse_line(self, line: str, drafts: ParseDrafts) -> bool:
        """Parse one logical line. Returns False if the line is not ours."""
        partial: LineFormat | None = None

        for fmt in self.formats:
            if not fmt.prefix.match(line):
                continue
            match = fmt.pattern.match(line)
            if match is None:
                partial = partial or fmt
                continue
            try:
                fmt.extract(match, drafts)
            except ValueError as e:
                raise ParseFormatError(self.domain, line, str(e)) from e
            if fmt.variant != "current":
                logger.debug(f"{self.domain}: '{line}' parsed with {fmt.variant} format {fmt.name}")
            return True

        if partial is not None:
            raise ParseFormatError(
                self.domain, line, f"malformed {partial.name} line"
            )
        return False
