"""Scoped credential binding.

``bind_credentials`` is the runner's ``withCredentials`` block: secrets are
resolved up front, exposed only through the environment mapping it yields,
and masked in the build log until the block exits.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, Mapping, Sequence

from cipipeline.config.models import CredentialBinding
from cipipeline.logging import get_logger
from cipipeline.logging.masking import SecretMasker, default_masker

from .store import CredentialStore

logger = get_logger(__name__, component="credentials")


@contextmanager
def bind_credentials(
    store: CredentialStore,
    bindings: Sequence[CredentialBinding],
    env: Mapping[str, str],
    masker: SecretMasker = default_masker,
) -> Iterator[Dict[str, str]]:
    """
    Yield a copy of ``env`` with every binding's secret added.

    All bindings are resolved before the block body runs, so a missing secret
    raises before any bound command executes. ``env`` itself is never
    modified.

    Raises:
        CredentialNotFoundError: If any credential id cannot be resolved

    Example:
        >>> with bind_credentials(store, step.bindings, env) as bound_env:
        ...     run(step.script, env=bound_env)
    """
    resolved = {binding.variable: store.get(binding.credentials_id) for binding in bindings}
    secrets = list(resolved.values())

    bound_env = dict(env)
    bound_env.update(resolved)

    masker.register(secrets)
    logger.info(
        f"Bound {len(resolved)} credential(s)",
        extra={
            "event": "credentials.bound",
            "credentials_ids": [binding.credentials_id for binding in bindings],
            "variables": sorted(resolved),
        },
    )
    try:
        yield bound_env
    finally:
        masker.unregister(secrets)
        logger.debug(
            "Released credential binding",
            extra={"event": "credentials.released", "variables": sorted(resolved)},
        )
