"""Error taxonomy for tool results and session errors.

Rules are tried in order and the first match wins. A rule is a predicate plus
a summarizer; new categories are added by appending to ``ERROR_RULES``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable

_USE_DIRECTIVE = re.compile(r"""^['"]use (client|server)['"];?""")
_IMPORT = re.compile(r"^import\s+[\{a-zA-Z]")
_FROM_IMPORT = re.compile(r"^from\s+[\w.]+\s+import\s+")
_EXPORT = re.compile(r"^export\s+(default\s+)?")
_DECLARATION = re.compile(r"^(const|let|var|function|class|interface|type|def)\s+")
_MARKUP = re.compile(r"^<[a-zA-Z!?]")
_JSON_OBJECT = re.compile(r'^\{\s*"')
_JSON_ARRAY = re.compile(r"^\[\s*\{")
_PATH_LISTING = re.compile(r"^(/[\w.\-]+){3,}")
_INDENTED = re.compile(r"^\s{2,}")

_SERVER_STATUS = re.compile(r"\b5\d{2}\b")
_ERROR_PREFIX = re.compile(r"^error[:\s]", re.IGNORECASE)
_EXIT_CODE = re.compile(r"exit code[:\s]*(\d+)", re.IGNORECASE)
_QUOTED_PATH = re.compile(r"""['"]([^'"]+)['"]""")
_ERROR_WORD = re.compile(r"error", re.IGNORECASE)


def looks_like_code(text: str) -> bool:
    """True when ``text`` reads as source code or a file dump rather than prose."""
    trimmed = (text or "").strip()
    if not trimmed:
        return False
    if trimmed.startswith("#!"):
        return True
    for pattern in (_USE_DIRECTIVE, _IMPORT, _FROM_IMPORT, _EXPORT, _DECLARATION, _MARKUP, _JSON_OBJECT, _JSON_ARRAY):
        if pattern.match(trimmed):
            return True
    lines = trimmed.split("\n")
    if _PATH_LISTING.match(trimmed) and len(lines) > 2:
        return True
    if len(lines) > 3:
        indented = sum(1 for line in lines if _INDENTED.match(line))
        if indented / len(lines) > 0.3:
            return True
    return False


@dataclass(frozen=True)
class ErrorMatch:
    category: str
    summary: str


@dataclass(frozen=True)
class ErrorRule:
    category: str
    matches: Callable[[str, str, str], bool]
    summarize: Callable[[str, str], str]
    struggle: str  # template, formatted with ``count``


def _first_line(text: str) -> str:
    return text.split("\n", 1)[0].strip()


def _is_rate_limit(text: str, lower: str, first: str) -> bool:
    return "429" in lower or "rate limit" in lower or "too many requests" in lower


def _is_server_error(text: str, lower: str, first: str) -> bool:
    return bool(_SERVER_STATUS.search(first)) and ("internal server" in lower or "server error" in lower)


def _server_summary(text: str, first: str) -> str:
    status = _SERVER_STATUS.search(first)
    return f"Server error ({status.group(0) if status else '5xx'}) encountered"


_BUILD_MARKERS = (
    "build failed",
    "compilation failed",
    "module not found",
    "syntaxerror",
    "typeerror:",
    "cannot find module",
)


def _is_build_error(text: str, lower: str, first: str) -> bool:
    return any(marker in lower for marker in _BUILD_MARKERS)


def _build_summary(text: str, first: str) -> str:
    error_line = next(
        (line for line in text.split("\n") if _ERROR_WORD.search(line) and not looks_like_code(line)),
        first,
    )
    return f"Build error: {error_line[:100].strip()}"


def _is_missing_file(text: str, lower: str, first: str) -> bool:
    return "enoent" in lower or ("no such file" in lower and "error" in lower)


def _missing_file_summary(text: str, first: str) -> str:
    quoted = _QUOTED_PATH.search(text)
    target = quoted.group(1).rstrip("/").split("/")[-1] if quoted else "file"
    return f"File not found: {target or 'file'}"


def _is_permission_denied(text: str, lower: str, first: str) -> bool:
    return "permission denied" in lower or "eacces" in lower


def _has_error_prefix(text: str, lower: str, first: str) -> bool:
    return bool(_ERROR_PREFIX.match(first)) and len(first) < 200


def _has_nonzero_exit(text: str, lower: str, first: str) -> bool:
    match = _EXIT_CODE.search(text)
    return bool(match) and int(match.group(1)) != 0


ERROR_RULES: list[ErrorRule] = [
    ErrorRule(
        "rate-limit",
        _is_rate_limit,
        lambda text, first: "Hit API rate limit (429), resolved after retry",
        "Hit rate limits {count} times and needed multiple retries",
    ),
    ErrorRule(
        "server-error",
        _is_server_error,
        _server_summary,
        "Server errors occurred {count} times",
    ),
    ErrorRule(
        "build-error",
        _is_build_error,
        _build_summary,
        "Build/compilation failed {count} times before succeeding",
    ),
    ErrorRule(
        "file-not-found",
        _is_missing_file,
        _missing_file_summary,
        "Missing files tripped things up {count} times",
    ),
    ErrorRule(
        "permission-denied",
        _is_permission_denied,
        lambda text, first: "Permission denied error",
        "Ran into permission errors {count} times",
    ),
    ErrorRule(
        "error-prefix",
        _has_error_prefix,
        lambda text, first: first[:100],
        "Encountered repeated failures ({count} occurrences)",
    ),
    ErrorRule(
        "exit-code",
        _has_nonzero_exit,
        lambda text, first: f"Command failed ({first[:80]})",
        "Commands exited with errors {count} times",
    ),
]

CATEGORY_ORDER: list[str] = [rule.category for rule in ERROR_RULES]
_RULES_BY_CATEGORY = {rule.category: rule for rule in ERROR_RULES}


def classify_error(text: str) -> ErrorMatch | None:
    """Classify tool-result or error text; ``None`` for code dumps and non-errors."""
    if not text or looks_like_code(text):
        return None
    lower = text.lower()
    first = _first_line(text)
    for rule in ERROR_RULES:
        if rule.matches(text, lower, first):
            return ErrorMatch(category=rule.category, summary=rule.summarize(text, first))
    return None


def struggle_text(category: str, count: int) -> str:
    rule = _RULES_BY_CATEGORY.get(category)
    if rule is None:
        return f"{category} errors occurred {count} times"
    return rule.struggle.format(count=count)
