"""Tests for credential loading and the owner-only credentials file."""
import json
import os
import stat

import pytest

from tablesync.config import Settings
from tablesync.errors import AuthError, CredentialsNotFoundError
from tablesync.remote.credentials import (
    DEFAULT_API_BASE_URL,
    ENV_KEYS,
    Credentials,
    CredentialsFile,
    load_credentials,
)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

FULL_ENV = {
    "ION_TENANT": "ENV_TENANT",
    "ION_SAAK": "env-saak",
    "ION_SASK": "env-sask",
    "ION_CLIENT_ID": "env-client",
    "ION_CLIENT_SECRET": "env-secret",
}

FILE_DATA = {
    "ti": "FILE_TENANT",
    "saak": "file-saak",
    "sask": "file-sask",
    "ci": "file-client",
    "cs": "file-secret",
    "iu": "https://ion.file.example.com/",
    "pu": "https://sso.file.example.com/FILE_TENANT/as/",
}


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """No ION_* variables or .env file leak in from the developer machine."""
    for key in ENV_KEYS.values():
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


def settings_with(env):
    return Settings(**{key.lower(): value for key, value in env.items()})


@pytest.fixture
def creds_path(tmp_path):
    return tmp_path / "creds" / "credentials.ionapi"


@pytest.fixture
def written_file(creds_path):
    creds_path.parent.mkdir(parents=True)
    creds_path.write_text(json.dumps(FILE_DATA))
    return creds_path


# ─── Tests: load_credentials ──────────────────────────────────────────────────

class TestLoadCredentials:
    def test_environment_only(self, tmp_path):
        creds = load_credentials(tmp_path / "absent.json", settings=settings_with(FULL_ENV))
        assert creds.tenant == "ENV_TENANT"
        assert creds.key_id == "env-saak"
        assert creds.client_secret == "env-secret"

    def test_file_only(self, written_file):
        creds = load_credentials(written_file, settings=settings_with({}))
        assert creds.tenant == "FILE_TENANT"
        assert creds.key_secret == "file-sask"
        assert creds.api_base_url == "https://ion.file.example.com"

    def test_environment_takes_priority_over_file(self, written_file):
        creds = load_credentials(written_file, settings=settings_with({"ION_TENANT": "ENV_TENANT"}))
        assert creds.tenant == "ENV_TENANT"
        # Fields the environment leaves empty come from the file
        assert creds.key_id == "file-saak"

    def test_default_urls_derived_from_tenant(self, tmp_path):
        creds = load_credentials(tmp_path / "absent.json", settings=settings_with(FULL_ENV))
        assert creds.api_base_url == DEFAULT_API_BASE_URL
        assert creds.sso_base_url == "https://mingle-sso.inforcloudsuite.com:443/ENV_TENANT/as/"

    def test_sso_url_gets_trailing_slash(self, tmp_path):
        env = {**FULL_ENV, "ION_SSO_URL": "https://sso.example.com/T/as"}
        creds = load_credentials(tmp_path / "absent.json", settings=settings_with(env))
        assert creds.sso_base_url == "https://sso.example.com/T/as/"

    def test_missing_fields_raise(self, tmp_path):
        env = {k: v for k, v in FULL_ENV.items() if k != "ION_SASK"}
        with pytest.raises(CredentialsNotFoundError) as exc_info:
            load_credentials(tmp_path / "absent.json", settings=settings_with(env))
        assert "ION_SASK" in str(exc_info.value)
        assert "python -m tablesync setup" in str(exc_info.value)

    def test_credentials_not_found_is_auth_error(self, tmp_path):
        with pytest.raises(AuthError):
            load_credentials(tmp_path / "absent.json", settings=settings_with({}))

    def test_unreadable_file_raises(self, creds_path):
        creds_path.parent.mkdir(parents=True)
        creds_path.write_text("not json")
        with pytest.raises(CredentialsNotFoundError):
            load_credentials(creds_path, settings=settings_with(FULL_ENV))

    def test_reads_process_environment(self, tmp_path, monkeypatch):
        for key, value in FULL_ENV.items():
            monkeypatch.setenv(key, value)
        creds = load_credentials(tmp_path / "absent.json", settings=Settings())
        assert creds.tenant == "ENV_TENANT"
        assert creds.key_secret == "env-sask"

    def test_reads_dotenv_file(self, tmp_path):
        lines = [f"{key}={value}" for key, value in FULL_ENV.items()]
        (tmp_path / ".env").write_text("\n".join(lines) + "\n")

        creds = load_credentials(tmp_path / "absent.json", settings=Settings())

        assert creds.tenant == "ENV_TENANT"
        assert creds.client_id == "env-client"
        assert creds.client_secret == "env-secret"

    def test_dotenv_values_take_priority_over_file(self, tmp_path, written_file):
        (tmp_path / ".env").write_text("ION_TENANT=DOTENV_TENANT\n")
        creds = load_credentials(written_file, settings=Settings())
        assert creds.tenant == "DOTENV_TENANT"
        assert creds.key_id == "file-saak"


# ─── Tests: Credentials value ─────────────────────────────────────────────────

class TestCredentials:
    def test_missing_fields_lists_required_only(self):
        creds = Credentials(tenant="T", key_id="k")
        assert creds.missing_fields() == ["key_secret", "client_id", "client_secret"]

    def test_repr_hides_secrets(self, credentials):
        text = repr(credentials)
        assert "sask-secret" not in text
        assert "client-secret" not in text

    def test_is_immutable(self, credentials):
        with pytest.raises(Exception):
            credentials.tenant = "OTHER"


# ─── Tests: CredentialsFile ───────────────────────────────────────────────────

class TestCredentialsFile:
    def test_save_creates_directory_and_file(self, creds_path, credentials):
        CredentialsFile(creds_path).save(credentials)
        assert creds_path.parent.is_dir()
        assert creds_path.exists()

    def test_save_uses_short_keys(self, creds_path, credentials):
        CredentialsFile(creds_path).save(credentials)
        data = json.loads(creds_path.read_text())
        assert data["ti"] == "ACME_TST"
        assert data["saak"] == "ACME_TST#saak"
        assert data["cs"] == "client-secret"

    def test_file_permissions_are_0600(self, creds_path, credentials):
        CredentialsFile(creds_path).save(credentials)
        mode = stat.S_IMODE(os.stat(creds_path).st_mode)
        assert mode == 0o600

    def test_directory_permissions_are_0700(self, creds_path, credentials):
        CredentialsFile(creds_path).save(credentials)
        mode = stat.S_IMODE(os.stat(creds_path.parent).st_mode)
        assert mode == 0o700

    def test_round_trip(self, creds_path, credentials):
        store = CredentialsFile(creds_path)
        store.save(credentials)
        assert store.load() == credentials

    def test_load_missing_raises(self, creds_path):
        with pytest.raises(CredentialsNotFoundError):
            CredentialsFile(creds_path).load()
