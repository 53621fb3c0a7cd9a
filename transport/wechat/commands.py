"""
Text command parsing.

Only one command exists:

    bind <github_token> <owner>/<repo> [path <prefix>]

Anything else is answered with the help text.
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_PATH_PREFIX = "articles/"

_REPO_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


class BindUsageError(ValueError):
    """``bind`` with fewer than two arguments."""


@dataclass(frozen=True)
class BindCommand:
    github_token: str
    repo: str
    path_prefix: Optional[str] = None


def parse_bind_command(content: Optional[str]) -> Optional[BindCommand]:
    """
    Parse a ``bind`` command.

    Returns:
        BindCommand, or None when the text is not a bind command

    Raises:
        BindUsageError: Token or repo missing
    """
    trimmed = (content or "").strip()
    if not trimmed.lower().startswith("bind "):
        return None

    tokens = trimmed.split()
    if len(tokens) < 3:
        raise BindUsageError("usage")

    path_prefix = None
    lowered = [t.lower() for t in tokens]
    if "path" in lowered:
        index = lowered.index("path")
        if index + 1 < len(tokens):
            path_prefix = tokens[index + 1]

    return BindCommand(github_token=tokens[1], repo=tokens[2], path_prefix=path_prefix)


def is_valid_repo_full_name(repo: Optional[str]) -> bool:
    return isinstance(repo, str) and bool(_REPO_RE.match(repo))


def normalize_path_prefix(prefix: Optional[str]) -> str:
    """``/notes`` -> ``notes/``; empty -> ``articles/``."""
    path = (prefix or "").strip() or DEFAULT_PATH_PREFIX
    if path.startswith("/"):
        path = path[1:]
    if not path.endswith("/"):
        path += "/"
    return path
