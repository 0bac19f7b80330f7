"""Configuration data models"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..api.client import DEFAULT_BASE_URL
from ..core.chunks import DEFAULT_CHUNK_COUNT


@dataclass
class Settings:
    """User settings stored in configuration.xml"""
    save_dir: Optional[Path] = None
    transfer_interval: float = 1.0
    refresh_interval: float = 60.0
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    max_attempts: int = 3
    retry_base_delay: float = 5.0
    retry_max_delay: float = 300.0
    chunk_count: int = DEFAULT_CHUNK_COUNT
    api_base_url: str = DEFAULT_BASE_URL

    @property
    def timeout(self) -> tuple[float, float]:
        return (self.connect_timeout, self.read_timeout)


class AuthState(Enum):
    """Progress of resolving the auth key to a user"""
    NOTHING = "nothing"
    FETCHING = "fetching"
    RESULT = "result"


@dataclass
class SyncConfig:
    """Credential and identity, kept in the state store under ``config``.

    ``auth_key`` is held in plain text in memory; ``to_json`` and
    ``from_json`` take the encrypt / decrypt functions to apply at rest.
    """
    auth_key: Optional[str] = None
    expected_user_id: Optional[int] = None
    auth_state: AuthState = AuthState.NOTHING
    user_id: Optional[int] = None

    @classmethod
    def from_json(cls, data: dict[str, Any], decrypt=lambda s: s) -> "SyncConfig":
        auth_key = data.get("auth_key")
        try:
            auth_state = AuthState(data.get("auth_state", AuthState.NOTHING.value))
        except ValueError:
            auth_state = AuthState.NOTHING
        # A lookup that never finished has to be done again
        if auth_state == AuthState.FETCHING:
            auth_state = AuthState.NOTHING
        return cls(
            auth_key=decrypt(auth_key) or None if auth_key else None,
            expected_user_id=data.get("expected_user_id"),
            auth_state=auth_state,
            user_id=data.get("user_id"),
        )

    def to_json(self, encrypt=lambda s: s) -> dict[str, Any]:
        return {
            "auth_key": encrypt(self.auth_key) if self.auth_key else None,
            "expected_user_id": self.expected_user_id,
            "auth_state": self.auth_state.value,
            "user_id": self.user_id,
        }
