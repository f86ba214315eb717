"""
Job specification parsing for `queuectl enqueue`.

Input is JSON. Shells (PowerShell in particular) tend to strip the double
quotes from an argument, so when strict parsing fails the text is normalized
once: bare keys are quoted, then bare string values. Numbers, booleans, null,
quoted strings and nested objects/arrays are left untouched.
"""

import json
import re
from pathlib import Path
from typing import Any

from queuectl.errors import ValidationError

_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z0-9_@.-]+)\s*:")
_BARE_VALUE = re.compile(r":\s*([^,}\[]+)(?=[,}])")
_NUMBER = re.compile(r"-?\d+(\.\d+)?([eE][+-]?\d+)?")
_LITERALS = {"true", "false", "null"}


def _quote_value(match: re.Match) -> str:
    raw = match.group(1).strip()
    if not raw:
        return ':""'
    if raw[0] in "\"'[{" or raw in _LITERALS or _NUMBER.fullmatch(raw):
        return ":" + raw
    return ':"' + raw.replace('"', '\\"') + '"'


def normalize_lenient(text: str) -> str:
    """Quote bare keys and bare string values of a shell-mangled JSON object."""
    text = _BARE_KEY.sub(r'\1"\2":', text.strip())
    return _BARE_VALUE.sub(_quote_value, text)


def read_spec_file(path: str | Path, cwd: Path | None = None) -> str:
    """Read a job specification from a file, relative paths against cwd."""
    resolved = Path(path)
    if not resolved.is_absolute():
        resolved = (cwd or Path.cwd()) / resolved
    try:
        return resolved.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ValidationError(f"File not found: {path}") from e
    except OSError as e:
        raise ValidationError(f"Cannot read {path}: {e}") from e


def parse_job_spec(text: str, cwd: Path | None = None) -> dict[str, Any]:
    """
    Parse a job specification.

    Args:
        text: JSON object text, or `@path` to read it from a file.
        cwd: Base directory for relative `@path` references.

    Returns:
        The job data as a dict.

    Raises:
        ValidationError: If the text cannot be read or parsed as an object.
    """
    text = (text or "").strip()
    if text.startswith("@"):
        text = read_spec_file(text[1:], cwd).strip()

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        try:
            data = json.loads(normalize_lenient(text))
        except json.JSONDecodeError as e:
            raise ValidationError(
                "Failed to parse job data. Quote the JSON for your shell or use --file. "
                f"Original error: {e}"
            ) from e

    if not isinstance(data, dict):
        raise ValidationError("Job data must be a JSON object")
    return data
