"""Tests for the interactive credentials setup wizard."""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tablesync.errors import AuthError
from tablesync.remote.credentials import DEFAULT_API_BASE_URL, CredentialsFile
from tablesync.scripts.setup import run_setup

IONAPI = {
    "ti": "ACME_TST",
    "saak": "ACME_TST#saak",
    "sask": "sask-secret",
    "ci": "ACME_TST~client",
    "cs": "client-secret",
}


@pytest.fixture
def target(tmp_path):
    return tmp_path / "home" / "credentials.ionapi"


@pytest.fixture
def wizard(target):
    """Runs run_setup() with scripted input() answers, saving under tmp_path."""

    def _run(answers, secrets=(), token_cache=None):
        files = lambda path=None: CredentialsFile(path or target)  # noqa: E731
        with patch("tablesync.scripts.setup.CredentialsFile", side_effect=files), \
             patch("builtins.input", side_effect=list(answers)), \
             patch("tablesync.scripts.setup.getpass.getpass", side_effect=list(secrets)), \
             patch("tablesync.scripts.setup.TokenCache", return_value=token_cache or MagicMock()):
            run_setup()

    return _run


def test_imports_downloaded_file_without_verifying(wizard, target, tmp_path):
    downloaded = tmp_path / "download.ionapi"
    downloaded.write_text(json.dumps(IONAPI))

    wizard([str(downloaded), "n"])

    saved = CredentialsFile(target).load()
    assert saved.tenant == "ACME_TST"
    assert saved.api_base_url == DEFAULT_API_BASE_URL


def test_typed_values_verified_then_saved(wizard, target):
    tokens = MagicMock()
    tokens.get_token = AsyncMock()

    wizard(
        ["", "ACME_TST", "ACME_TST#saak", "ACME_TST~client", "", "", "y"],
        secrets=["sask-secret", "client-secret"],
        token_cache=tokens,
    )

    tokens.get_token.assert_awaited_once()
    saved = CredentialsFile(target).load()
    assert saved.key_secret == "sask-secret"
    assert saved.sso_base_url.endswith("/")


def test_failed_verification_saves_nothing(wizard, target):
    tokens = MagicMock()
    tokens.get_token = AsyncMock(side_effect=AuthError("Token request rejected with 401"))

    with pytest.raises(SystemExit) as exc_info:
        wizard(
            ["", "ACME_TST", "ACME_TST#saak", "ACME_TST~client", "", "", ""],
            secrets=["sask-secret", "client-secret"],
            token_cache=tokens,
        )

    assert exc_info.value.code == 1
    assert not target.exists()


def test_existing_file_kept_unless_confirmed(wizard, target, credentials):
    CredentialsFile(target).save(credentials)

    with pytest.raises(SystemExit) as exc_info:
        wizard(["n"])

    assert exc_info.value.code == 0
    assert CredentialsFile(target).load().tenant == "ACME_TST"


def test_incomplete_values_rejected(wizard, target):
    with pytest.raises(SystemExit):
        wizard(["", "ACME_TST", "", "", "", ""], secrets=["", ""])
    assert not target.exists()
