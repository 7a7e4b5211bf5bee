"""
Client session state for the VoiceMatch API client.

One ApiSession holds the server location and credentials of a signed-in
user; every client call goes through it instead of module-level state.
"""

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

DEFAULT_BASE_URL = "http://localhost:8000/api/v1"


@dataclass
class ApiSession:
    """Base URL, access token, refresh token and current user."""

    base_url: str = DEFAULT_BASE_URL
    token: Optional[str] = None
    refresh_token: Optional[str] = None
    user: Optional[Dict[str, Any]] = None
    token_prefix: str = "Token"
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def auth_headers(self) -> Dict[str, str]:
        """Authorization header for the current token (empty when signed out)."""
        with self._lock:
            token = self.token
        if not token:
            return {}
        if token.startswith(f"{self.token_prefix} "):
            return {"Authorization": token}
        return {"Authorization": f"{self.token_prefix} {token}"}

    def set_token(self, token: Optional[str]) -> None:
        with self._lock:
            self.token = token

    def current_token(self) -> Optional[str]:
        with self._lock:
            return self.token

    def clear(self) -> None:
        """Forget all credentials (signed out)."""
        with self._lock:
            self.token = None
            self.refresh_token = None
            self.user = None

    @property
    def is_authenticated(self) -> bool:
        return self.current_token() is not None
