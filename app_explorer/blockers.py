from __future__ import annotations

"""Detection of screens that wall off the rest of an app.

Login forms, password and PIN prompts, one-time-code entry and biometric
prompts need the user; the explorer never taps on them and routes around
them.  A screen counts as a blocker when it holds a password field, when its
activity name matches one of the patterns, or when it holds a text input and
its texts or resource names match.
"""

from enum import Enum
from typing import Iterable, List, Optional, Tuple
import re

from .knowledge import UIElement, flatten_elements


class BlockerKind(str, Enum):
    PASSWORD = "password"
    PIN = "pin"
    OTP = "otp"
    LOGIN = "login"
    BIOMETRIC = "biometric"


# first match wins
_PATTERNS: List[Tuple[BlockerKind, re.Pattern]] = [
    (BlockerKind.PASSWORD, re.compile(r"\b(pass ?word|passcode|passphrase)\b")),
    (BlockerKind.PIN, re.compile(r"\b(pin ?code|pin|security code)\b")),
    (BlockerKind.OTP, re.compile(r"\b(otp|2fa|two factor|verif(y|ication) code|sms code|auth code|authenticator)\b")),
    (BlockerKind.LOGIN, re.compile(r"\b(log ?in|sign ?in|sign ?up|authenticate)\b")),
    (BlockerKind.BIOMETRIC, re.compile(r"\b(fingerprint|face id|touch id|biometric)\b")),
]

_CAMEL = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_NON_WORD = re.compile(r"[^a-z0-9]+")


def _words(values: Iterable[Optional[str]]) -> str:
    """Lower-case words, camel case and separators split: `SignInActivity` -> `sign in activity`."""
    text = " ".join(_CAMEL.sub(" ", v) for v in values if v)
    return _NON_WORD.sub(" ", text.lower()).strip()


def _match(text: str) -> Optional[BlockerKind]:
    for kind, pattern in _PATTERNS:
        if pattern.search(text):
            return kind
    return None


def _is_text_input(element: UIElement) -> bool:
    return element.matches_class("EditText")


def detect_blocker(activity: Optional[str], elements: List[UIElement]) -> Optional[BlockerKind]:
    """Return the kind of blocker shown, or None for an ordinary screen."""
    flat = flatten_elements(elements)
    if any(e.password for e in flat):
        return BlockerKind.PASSWORD
    kind = _match(_words([activity.rsplit(".", 1)[-1] if activity else None]))
    if kind is not None:
        return kind
    if not any(_is_text_input(e) for e in flat):
        return None
    names = [e.resource_id.rsplit("/", 1)[-1] if e.resource_id else None for e in flat]
    return _match(_words([e.text for e in flat] + [e.content_description for e in flat] + names))
