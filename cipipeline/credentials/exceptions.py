"""Credential lookup exceptions."""


class CredentialError(Exception):
    """Base exception for credential store and binding errors."""

    pass


class CredentialNotFoundError(CredentialError):
    """No non-empty secret is stored under the requested id.

    Raised before any bound command runs, so a missing secret fails the
    binding step rather than the command that would have used it.
    """

    def __init__(self, credentials_id: str) -> None:
        super().__init__(f"Credential not found: '{credentials_id}'")
        self.credentials_id = credentials_id


class CredentialStoreError(CredentialError):
    """The credentials file exists but cannot be read or parsed."""

    pass
