"""OAuth2 credential handling shared by every platform connector."""

from .credentials import Credential
from .store import CredentialStore

__all__ = ["Credential", "CredentialStore"]
