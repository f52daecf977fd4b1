from __future__ import annotations

import datetime as dt
import json
import logging
import os
import threading
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger('stet')

# A token this close to expiry is refreshed before use.
EXPIRY_SKEW = dt.timedelta(minutes=5)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class Token:
    access_token: str
    refresh_token: str
    token_type: str
    expires_at: dt.datetime

    def usable(self, now: Optional[dt.datetime] = None) -> bool:
        now = now or utcnow()
        return now + EXPIRY_SKEW < self.expires_at

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Token":
        expires = dt.datetime.fromisoformat(str(raw["expires_at"]).replace("Z", "+00:00"))
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=dt.timezone.utc)
        return cls(
            access_token=str(raw["access_token"]),
            refresh_token=str(raw.get("refresh_token") or ""),
            token_type=str(raw.get("token_type") or "Bearer"),
            expires_at=expires,
        )


class TokenStore:
    """One JSON token record per integration, readable by the owner only."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> Optional[Token]:
        """The stored token, or None when there is none or it cannot be read."""
        with self._lock:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    raw = json.load(f)
            except FileNotFoundError:
                return None
            except ValueError as exc:
                logger.warning("ignoring unreadable token file %s: %s", self.path, exc)
                return None
        try:
            return Token.from_dict(raw)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("ignoring malformed token record in %s: %r", self.path, exc)
            return None

    def save(self, token: Token) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        with self._lock:
            os.makedirs(directory, mode=0o700, exist_ok=True)
            os.chmod(directory, 0o700)
            tmp = f"{self.path}.tmp"
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(token.to_dict(), f, indent=2)
            os.chmod(tmp, 0o600)
            os.replace(tmp, self.path)
        logger.debug("saved token to %s", self.path)

    def clear(self) -> None:
        with self._lock:
            try:
                os.remove(self.path)
            except FileNotFoundError:
                pass
