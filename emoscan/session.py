"""Browser-session identity chosen during onboarding."""
from __future__ import annotations

from dataclasses import dataclass

MAX_NAME_LENGTH = 64


@dataclass(frozen=True)
class SessionIdentity:
    name: str

    @classmethod
    def from_input(cls, raw: object, *, fallback: str = "User") -> "SessionIdentity":
        """Trim the submitted name, falling back when it is blank."""
        text = raw.strip() if isinstance(raw, str) else ""
        text = " ".join(text.split())[:MAX_NAME_LENGTH]
        return cls(name=text or fallback)


__all__ = ["SessionIdentity", "MAX_NAME_LENGTH"]
