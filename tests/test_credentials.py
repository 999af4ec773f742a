"""Tests for the credential store and scoped binding."""

import pytest

from cipipeline.config.models import CredentialBinding
from cipipeline.credentials import (
    ENV_PREFIX,
    CredentialNotFoundError,
    CredentialStore,
    CredentialStoreError,
    bind_credentials,
)
from cipipeline.logging.masking import MASK, SecretMasker


@pytest.fixture
def credentials_file(tmp_path):
    path = tmp_path / "credentials.yaml"
    path.write_text(
        "credentials:\n"
        "  MeterianApiToken: file-token\n"
        "  meterianApiToken: lower-file-token\n"
        "  NumericPin: 1234\n"
        "  Blank: ''\n"
    )
    return path


class TestCredentialStore:
    """Lookup order and missing-secret behaviour."""

    def test_explicit_mapping(self):
        store = CredentialStore(secrets={"MeterianApiToken": "s3cret"}, environ={})
        assert store.get("MeterianApiToken") == "s3cret"

    def test_environment_source(self):
        store = CredentialStore(environ={f"{ENV_PREFIX}MeterianApiToken": "from-env"})
        assert store.get("MeterianApiToken") == "from-env"

    def test_file_source(self, credentials_file):
        store = CredentialStore(credentials_file=credentials_file, environ={})

        assert store.get("MeterianApiToken") == "file-token"
        assert store.get("NumericPin") == "1234"

    def test_precedence(self, credentials_file):
        store = CredentialStore(
            secrets={"MeterianApiToken": "explicit"},
            credentials_file=credentials_file,
            environ={f"{ENV_PREFIX}MeterianApiToken": "env", f"{ENV_PREFIX}meterianApiToken": "env-lower"},
        )

        assert store.get("MeterianApiToken") == "explicit"
        assert store.get("meterianApiToken") == "env-lower"

    def test_ids_are_case_sensitive(self):
        store = CredentialStore(secrets={"MeterianApiToken": "s3cret"}, environ={})

        with pytest.raises(CredentialNotFoundError) as exc_info:
            store.get("meterianApiToken")

        assert exc_info.value.credentials_id == "meterianApiToken"
        assert str(exc_info.value) == "Credential not found: 'meterianApiToken'"

    def test_empty_value_counts_as_missing(self, credentials_file):
        store = CredentialStore(
            secrets={"Empty": ""}, credentials_file=credentials_file, environ={}
        )

        assert store.contains("Empty") is False
        assert store.contains("Blank") is False
        assert store.contains("MeterianApiToken") is True

    def test_known_ids(self, credentials_file):
        store = CredentialStore(
            secrets={"Explicit": "x"},
            credentials_file=credentials_file,
            environ={f"{ENV_PREFIX}FromEnv": "y", "UNRELATED": "z"},
        )

        assert store.known_ids() == [
            "Explicit",
            "FromEnv",
            "MeterianApiToken",
            "NumericPin",
            "meterianApiToken",
        ]

    def test_file_without_credentials_mapping(self, tmp_path):
        path = tmp_path / "credentials.yaml"
        path.write_text("credentials:\n  - not\n  - a mapping\n")

        with pytest.raises(CredentialStoreError, match="'credentials' mapping"):
            CredentialStore(credentials_file=path, environ={})

    def test_unparseable_file(self, tmp_path):
        path = tmp_path / "credentials.yaml"
        path.write_text("credentials: [unclosed\n")

        with pytest.raises(CredentialStoreError, match="Cannot parse"):
            CredentialStore(credentials_file=path, environ={})

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(CredentialStoreError, match="Cannot read"):
            CredentialStore(credentials_file=tmp_path / "missing.yaml", environ={})


class TestBindCredentials:
    """Block-scoped exposure."""

    def test_binds_variables_into_copy(self):
        store = CredentialStore(secrets={"MeterianApiToken": "s3cret"}, environ={})
        bindings = [CredentialBinding(credentials_id="MeterianApiToken", variable="METERIAN_API_TOKEN")]
        env = {"PATH": "/usr/bin"}

        with bind_credentials(store, bindings, env, masker=SecretMasker()) as bound_env:
            assert bound_env == {"PATH": "/usr/bin", "METERIAN_API_TOKEN": "s3cret"}

        assert env == {"PATH": "/usr/bin"}

    def test_masks_only_while_bound(self):
        masker = SecretMasker()
        store = CredentialStore(secrets={"MeterianApiToken": "s3cret"}, environ={})
        bindings = [CredentialBinding(credentials_id="MeterianApiToken", variable="METERIAN_API_TOKEN")]

        with bind_credentials(store, bindings, {}, masker=masker):
            assert masker.mask("token=s3cret") == f"token={MASK}"

        assert masker.mask("token=s3cret") == "token=s3cret"

    def test_missing_secret_raises_before_body(self):
        masker = SecretMasker()
        store = CredentialStore(secrets={"First": "one"}, environ={})
        bindings = [
            CredentialBinding(credentials_id="First", variable="FIRST"),
            CredentialBinding(credentials_id="Second", variable="SECOND"),
        ]
        entered = []

        with pytest.raises(CredentialNotFoundError):
            with bind_credentials(store, bindings, {}, masker=masker):
                entered.append(True)

        assert entered == []
        assert masker.active_secrets() == []

    def test_released_when_body_raises(self):
        masker = SecretMasker()
        store = CredentialStore(secrets={"MeterianApiToken": "s3cret"}, environ={})
        bindings = [CredentialBinding(credentials_id="MeterianApiToken", variable="METERIAN_API_TOKEN")]

        with pytest.raises(RuntimeError):
            with bind_credentials(store, bindings, {}, masker=masker):
                raise RuntimeError("boom")

        assert masker.active_secrets() == []
