"""Input sanitization and allow-list validation for room workflows.

``sanitize`` is best-effort hardening only. Acceptance is always decided by
the strict allow-list predicates (:func:`is_valid_username`,
:func:`is_valid_room_id`) applied to the *sanitized* value.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

ROOM_ID_LENGTH = 4
USERNAME_MAX_LENGTH = 20

USERNAME_REGEX = re.compile(r"[A-Za-z0-9_-]{3,20}")
ROOM_ID_REGEX = re.compile(r"[A-Z]{4}")

_MARKUP_CHARS = re.compile(r"[<>\"'`]")
_SCRIPT_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+=", re.IGNORECASE)
_NOT_ROOM_LETTER = re.compile(r"[^A-Z]")


@dataclass
class ValidationIssue:
    field: str
    message: str


class ValidationError(ValueError):
    """Raised when input fails the sanitize + allow-list gate."""

    def __init__(self, issues: Iterable[ValidationIssue]) -> None:
        self.issues = list(issues)
        super().__init__("\n".join(issue.message for issue in self.issues))


def sanitize(value: Optional[str], max_length: int) -> str:
    if value is None:
        return ""
    cleaned = value.strip()
    cleaned = _MARKUP_CHARS.sub("", cleaned)
    cleaned = _SCRIPT_SCHEME.sub("", cleaned)
    cleaned = _EVENT_HANDLER.sub("", cleaned)
    cleaned = cleaned.replace("\0", "")
    return cleaned[:max_length]


def is_valid_username(value: Optional[str]) -> bool:
    return value is not None and USERNAME_REGEX.fullmatch(value) is not None


def is_valid_room_id(value: Optional[str]) -> bool:
    return value is not None and ROOM_ID_REGEX.fullmatch(value) is not None


def normalize_room_id(raw: Optional[str]) -> str:
    """Sanitize, upper-case and keep only ``A``-``Z``.

    The result may still be the wrong length; callers must run
    :func:`is_valid_room_id` on it.
    """

    upper = sanitize(raw, ROOM_ID_LENGTH).upper()
    return _NOT_ROOM_LETTER.sub("", upper)


def normalize_username(raw: Optional[str]) -> str:
    return sanitize(raw, USERNAME_MAX_LENGTH)


def validate_room_id(room_id: str) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if not room_id:
        issues.append(ValidationIssue("room_id", "Enter a 4-letter room code."))
        return issues
    if not is_valid_room_id(room_id):
        issues.append(
            ValidationIssue(
                "room_id",
                "Room code must be exactly 4 uppercase letters (A-Z).",
            )
        )
    return issues


def validate_username(username: str) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if not is_valid_username(username):
        issues.append(
            ValidationIssue(
                "username",
                "Username must be 3-20 characters: letters, digits, '_' or '-'.",
            )
        )
    return issues


def collect_issues(*sources: Iterable[ValidationIssue]) -> list[ValidationIssue]:
    aggregated: list[ValidationIssue] = []
    for source in sources:
        aggregated.extend(source)
    return aggregated


__all__ = [
    "ROOM_ID_LENGTH",
    "USERNAME_MAX_LENGTH",
    "ValidationError",
    "ValidationIssue",
    "collect_issues",
    "is_valid_room_id",
    "is_valid_username",
    "normalize_room_id",
    "normalize_username",
    "sanitize",
    "validate_room_id",
    "validate_username",
]
