"""Named-credential lookup and block-scoped binding."""

from .binding import bind_credentials
from .exceptions import CredentialError, CredentialNotFoundError, CredentialStoreError
from .store import ENV_PREFIX, CredentialStore

__all__ = [
    "CredentialStore",
    "bind_credentials",
    "ENV_PREFIX",
    "CredentialError",
    "CredentialNotFoundError",
    "CredentialStoreError",
]
