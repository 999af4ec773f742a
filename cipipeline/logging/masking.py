"""Secret masking for build output and log records.

Values bound through ``with_credentials`` are registered with a
:class:`SecretMasker` for the lifetime of the binding. Anything written to the
build log while they are registered has every occurrence replaced by
``****``.
"""

import logging
import threading
from collections import Counter
from typing import Iterable, List

MASK = "****"


class SecretMasker:
    """Thread-safe registry of secret values to redact from text.

    Registration is reference counted so nested bindings of the same secret
    keep it masked until the outermost binding is released.
    """

    def __init__(self) -> None:
        self._secrets: Counter = Counter()
        self._lock = threading.Lock()

    def register(self, values: Iterable[str]) -> None:
        with self._lock:
            for value in values:
                if value:
                    self._secrets[value] += 1

    def unregister(self, values: Iterable[str]) -> None:
        with self._lock:
            for value in values:
                if not value or value not in self._secrets:
                    continue
                self._secrets[value] -= 1
                if self._secrets[value] <= 0:
                    del self._secrets[value]

    def active_secrets(self) -> List[str]:
        """Registered secrets, longest first so overlapping values mask fully."""
        with self._lock:
            return sorted(self._secrets, key=len, reverse=True)

    def mask(self, text: str) -> str:
        if not text:
            return text
        for secret in self.active_secrets():
            text = text.replace(secret, MASK)
        return text


class SecretMaskingFilter(logging.Filter):
    """Logging filter that redacts registered secrets from records.

    The message is rendered once with its args, masked, and stored back with
    empty args. String-valued extras are masked too.
    """

    def __init__(self, masker: SecretMasker):
        super().__init__()
        self.masker = masker

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.masker.active_secrets():
            return True

        record.msg = self.masker.mask(record.getMessage())
        record.args = ()

        for key, value in list(record.__dict__.items()):
            if key.startswith("_") or key in ("msg", "args"):
                continue
            if isinstance(value, str):
                setattr(record, key, self.masker.mask(value))

        return True


# Process-wide masker shared by the credential binder and the log handler
default_masker = SecretMasker()
