"""Per-file metadata enrichment applied before chunks are stored.

Enrichments (``file_type``, ``is_code``, ``is_implementation``, ``language``,
``_suspicious_content_detected``) override caller-supplied metadata, which in
turn overrides run-wide defaults.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath
from typing import Any

logger = logging.getLogger(__name__)

# Flagged and logged, never blocked: legitimate code and docs contain these too.
SUSPICIOUS_PATTERNS: tuple[str, ...] = (
    "ignore previous instructions",
    "ignore all previous",
    "disregard above",
    "forget everything",
    "system prompt",
    "you are now",
    "act as if",
    "pretend you are",
    "new instructions:",
    "[inst]",
    "<|im_start|>",
    "### human:",
    "### assistant:",
)

_LANGUAGES: dict[str, str] = {
    "cs": "csharp",
    "fs": "fsharp",
    "vb": "vb",
    "js": "javascript",
    "jsx": "javascript",
    "ts": "typescript",
    "tsx": "typescript",
    "py": "python",
    "rb": "ruby",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "kt": "kotlin",
    "swift": "swift",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "hpp": "cpp",
    "m": "objective-c",
    "mm": "objective-c",
    "php": "php",
    "pl": "perl",
    "sh": "bash",
    "bash": "bash",
    "ps1": "powershell",
    "psm1": "powershell",
}

CODE_EXTENSIONS = frozenset(_LANGUAGES)

_TEST_DIRS = frozenset({"test", "tests", "spec", "specs", "__tests__", "__test__"})


def file_type_of(file_path: str) -> str:
    """Lower-case extension without the dot, or ``"unknown"``."""
    suffix = PurePosixPath(file_path.replace("\\", "/")).suffix
    return suffix[1:].lower() if suffix else "unknown"


def is_code_file(file_type: str) -> bool:
    return file_type.lower() in CODE_EXTENSIONS


def is_implementation_file(file_path: str, is_code: bool) -> bool:
    """Code that is not a test: no test directory in the path, no test-like name."""
    if not is_code:
        return False
    path = PurePosixPath(file_path.replace("\\", "/"))
    if any(part.lower() in _TEST_DIRS for part in path.parts[:-1]):
        return False
    stem = path.stem.lower()
    if stem.startswith("test") or stem.endswith(("test", "tests", "spec")):
        return False
    return True


def language_of(file_type: str, is_code: bool) -> str:
    if not is_code:
        return "text"
    return _LANGUAGES.get(file_type.lower(), "code")


def detect_suspicious_content(text: str) -> str | None:
    """Return the first prompt-injection-like phrase found in *text*, or None."""
    if not text:
        return None
    lowered = text.lower()
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern in lowered:
            return pattern
    return None


def enrich_metadata(
    repo_url: str,
    file_path: str,
    text: str,
    metadata: dict[str, Any] | None = None,
    *,
    defaults: dict[str, Any] | None = None,
    file_type: str | None = None,
    is_code: bool | None = None,
    is_implementation: bool | None = None,
) -> dict[str, Any]:
    """Build the metadata stored with every chunk of one file.

    Explicit *file_type*, *is_code* and *is_implementation* values win over
    the ones derived from the path.
    """
    file_type = file_type or file_type_of(file_path)
    code = is_code if is_code is not None else is_code_file(file_type)
    implementation = (
        is_implementation if is_implementation is not None else is_implementation_file(file_path, code)
    )

    suspicious = detect_suspicious_content(text)
    if suspicious is not None:
        logger.warning(
            "Potential prompt injection in %s:%s (pattern %r); flagged, not blocked",
            repo_url,
            file_path,
            suspicious,
        )

    merged: dict[str, Any] = {}
    merged.update(defaults or {})
    merged.update(metadata or {})
    merged.update(
        {
            "file_type": file_type,
            "is_code": code,
            "is_implementation": implementation,
            "language": language_of(file_type, code),
            "_suspicious_content_detected": suspicious is not None,
        }
    )
    return merged
