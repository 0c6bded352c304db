from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class Credential:
    """
    One OAuth2 credential set bound to a single account.

    Static fields describe the registered application; the dynamic fields
    (tokens and expiry) are only ever written by the owning CredentialStore.
    `expires_time` is absolute unix seconds.
    """

    client_id: str
    client_secret: str = ""
    redirect_url: str = ""
    scopes: Union[str, List[str]] = field(default_factory=list)
    name: str = "token"

    access_token: str = ""
    refresh_token: str = ""
    expires_in: Optional[int] = None
    expires_time: Optional[float] = None

    def is_stale(self, now: Optional[float] = None) -> bool:
        """A credential with unknown expiry is treated as stale."""
        if self.expires_time is None:
            return True
        current = time.time() if now is None else now
        return self.expires_time < current

    @property
    def scope_string(self) -> str:
        if isinstance(self.scopes, str):
            return self.scopes
        return " ".join(self.scopes)

    def snapshot(self) -> Dict[str, Any]:
        """Dynamic fields only; the shape emitted with `credentials`."""
        return {
            "name": self.name,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_in": self.expires_in,
            "expires_time": self.expires_time,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Credential":
        expires_time = raw.get("expires_time")
        expires_in = raw.get("expires_in")
        return cls(
            client_id=str(raw.get("client_id") or ""),
            client_secret=str(raw.get("client_secret") or ""),
            redirect_url=str(raw.get("redirect_url") or ""),
            scopes=raw.get("scopes") or [],
            name=str(raw.get("name") or "token"),
            access_token=str(raw.get("access_token") or ""),
            refresh_token=str(raw.get("refresh_token") or ""),
            expires_in=int(expires_in) if expires_in not in (None, "") else None,
            expires_time=float(expires_time) if expires_time not in (None, "") else None,
        )


__all__ = ["Credential"]
