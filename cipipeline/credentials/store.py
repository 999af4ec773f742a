"""Read-only named-credential lookup.

Secrets are looked up by id in three places, first match wins:

1. an explicit mapping handed to the store (tests, embedding callers)
2. process variables named ``CIPIPELINE_CREDENTIAL_<id>``
3. the YAML file named by ``CREDENTIALS_FILE``::

       credentials:
         MeterianApiToken: "..."

Ids are case-sensitive. An empty value counts as missing.
"""

import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

import yaml

from cipipeline.logging import get_logger

from .exceptions import CredentialNotFoundError, CredentialStoreError

ENV_PREFIX = "CIPIPELINE_CREDENTIAL_"

logger = get_logger(__name__, component="credentials")


class CredentialStore:
    """Resolve secret-text credentials by id."""

    def __init__(
        self,
        secrets: Optional[Mapping[str, str]] = None,
        credentials_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Args:
            secrets: Explicit id -> secret mapping, consulted first
            credentials_file: Optional YAML file with a ``credentials`` mapping
            environ: Process environment to scan (defaults to os.environ)
        """
        self._secrets: Dict[str, str] = dict(secrets or {})
        self._environ = environ if environ is not None else os.environ
        self._file_secrets: Dict[str, str] = {}
        self.credentials_file = Path(credentials_file) if credentials_file else None

        if self.credentials_file is not None:
            self._file_secrets = _load_credentials_file(self.credentials_file)

    def get(self, credentials_id: str) -> str:
        """
        Return the secret stored under ``credentials_id``.

        Raises:
            CredentialNotFoundError: If no source holds a non-empty value
        """
        for source, value in (
            ("explicit", self._secrets.get(credentials_id)),
            ("environment", self._environ.get(f"{ENV_PREFIX}{credentials_id}")),
            ("file", self._file_secrets.get(credentials_id)),
        ):
            if value:
                logger.debug(
                    f"Resolved credential '{credentials_id}'",
                    extra={
                        "event": "credentials.resolved",
                        "credentials_id": credentials_id,
                        "credential_source": source,
                    },
                )
                return value

        logger.warning(
            f"Credential '{credentials_id}' not found",
            extra={"event": "credentials.missing", "credentials_id": credentials_id},
        )
        raise CredentialNotFoundError(credentials_id)

    def contains(self, credentials_id: str) -> bool:
        try:
            self.get(credentials_id)
        except CredentialNotFoundError:
            return False
        return True

    def known_ids(self) -> List[str]:
        """Ids with a non-empty value in any source, sorted."""
        ids = {key for key, value in self._secrets.items() if value}
        ids.update(
            key[len(ENV_PREFIX):]
            for key, value in self._environ.items()
            if key.startswith(ENV_PREFIX) and value
        )
        ids.update(key for key, value in self._file_secrets.items() if value)
        return sorted(ids)


def _load_credentials_file(path: Path) -> Dict[str, str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise CredentialStoreError(f"Cannot read credentials file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise CredentialStoreError(f"Cannot parse credentials file {path}: {e}") from e

    credentials = data.get("credentials", {}) if isinstance(data, dict) else None
    if not isinstance(credentials, dict):
        raise CredentialStoreError(
            f"Credentials file {path} must contain a 'credentials' mapping of id to secret"
        )

    # Secrets are exposed as environment variables, so coerce scalars to str
    return {str(key): "" if value is None else str(value) for key, value in credentials.items()}
