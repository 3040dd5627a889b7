"""Command templates shared by the per-domain synthesizers."""
import re
from dataclasses import dataclass
from typing import Any, Optional

_TOKEN = re.compile(r'"[^"]*"|\S+')


def squash(command: str) -> str:
    """Collapse the double spaces left behind by empty optional segments.

    Quoted strings are kept intact.
    """
    return " ".join(_TOKEN.findall(command))


@dataclass(frozen=True)
class CommandTemplate:
    """A device command and the ``no`` form that removes it.

    ``text`` renders the full command. ``delete`` renders the removal; when
    omitted it is ``no`` followed by ``text`` truncated to ``identity``
    (the identity tokens of the command, without its values).
    """
    text: str
    identity: Optional[str] = None
    delete: Optional[str] = None

    def render(self, **fields: Any) -> str:
        return squash(self.text.format(**fields))

    def render_delete(self, **fields: Any) -> str:
        if self.delete is not None:
            return squash(self.delete.format(**fields))
        base = self.identity if self.identity is not None else self.text
        return squash("no " + base.format(**fields))


def optional_segment(keyword: str, value: Any) -> str:
    """Render ``keyword value`` or nothing when the value is absent."""
    if value is None:
        return ""
    return f"{keyword} {value}"


def optional_kv(key: str, value: Any) -> str:
    """Render ``key=value`` or nothing when the value is absent."""
    if value is None:
        return ""
    return f"{key}={value}"
