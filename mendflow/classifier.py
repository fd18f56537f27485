"""Rule-based classification of step failures.

A failure is ``healable`` when a configuration change could plausibly make
the step succeed, and ``permanent`` otherwise. Classification is
deterministic and never touches the network.

Order of evaluation:

1. timeouts are permanent;
2. structured auth/quota status codes are permanent;
3. permanent text patterns win over everything below;
4. structured client-error status codes are healable;
5. healable text patterns;
6. anything else is permanent, so unknown errors are never blindly retried.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Union

from .errors import ActionFailure


PERMANENT_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "authentication failed",
    "permission denied",
    "quota exceeded",
    "rate limit",
    "missing_scope",
    "invalid_auth",
    "token_revoked",
    "account_suspended",
)

HEALABLE_PATTERNS: tuple[str, ...] = (
    "not found",
    "invalid",
    "missing",
    "incorrect",
    "configuration",
    "format",
    "syntax",
    "cannot read",
    "undefined",
    "null",
    "type error",
    "does not exist",
    "channel",
    "parameter",
    "400",
    "404",
    "422",
)

PERMANENT_STATUS_CODES = frozenset({401, 403, 407, 429})
HEALABLE_STATUS_CODES = frozenset({400, 404, 422})


class FailureClass(str, Enum):
    PERMANENT = "permanent"
    HEALABLE = "healable"


def _describe(error: Union[BaseException, str]) -> tuple[str, Mapping[str, Any]]:
    if isinstance(error, ActionFailure):
        return error.message, error.details or {}
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__, {}
    return str(error), {}


def _status_code(details: Mapping[str, Any]) -> Optional[int]:
    code = details.get("status_code")
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


class FailureClassifier:
    """Classify failures as permanent or healable."""

    def __init__(
        self,
        extra_permanent: Iterable[str] = (),
        extra_healable: Iterable[str] = (),
    ) -> None:
        self.permanent_patterns = PERMANENT_PATTERNS + tuple(
            p.lower() for p in extra_permanent
        )
        self.healable_patterns = HEALABLE_PATTERNS + tuple(
            p.lower() for p in extra_healable
        )

    def classify(self, error: Union[BaseException, str]) -> FailureClass:
        message, details = _describe(error)
        text = message.lower()
        status = _status_code(details)

        if details.get("timed_out"):
            return FailureClass.PERMANENT
        if status in PERMANENT_STATUS_CODES:
            return FailureClass.PERMANENT
        if any(pattern in text for pattern in self.permanent_patterns):
            return FailureClass.PERMANENT
        if status in HEALABLE_STATUS_CODES:
            return FailureClass.HEALABLE
        if any(pattern in text for pattern in self.healable_patterns):
            return FailureClass.HEALABLE
        return FailureClass.PERMANENT

    def is_healable(self, error: Union[BaseException, str]) -> bool:
        return self.classify(error) is FailureClass.HEALABLE


_default_classifier = FailureClassifier()


def classify(error: Union[BaseException, str]) -> FailureClass:
    """Classify ``error`` with the built-in rules."""
    return _default_classifier.classify(error)


def is_healable(error: Union[BaseException, str]) -> bool:
    return _default_classifier.is_healable(error)
