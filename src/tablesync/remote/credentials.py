"""
Remote query service credentials: one structured load, env first, then file.

The credentials file is the `.ionapi` JSON exported from the provider
console, which uses short keys:

    {
        "ti":   "TENANT",                # tenant id
        "saak": "TENANT#abc...",         # service-account access key
        "sask": "xyz...",                # service-account secret key
        "ci":   "TENANT~client",         # OAuth client id
        "cs":   "...",                   # OAuth client secret
        "iu":   "https://mingle-ionapi.inforcloudsuite.com",
        "pu":   "https://mingle-sso.inforcloudsuite.com:443/TENANT/as/"
    }

The file is written with owner-only permissions by `python -m tablesync setup`.
Credentials are never stored in the database.
"""
import json
import logging
import os
import stat
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from tablesync.config import Settings, get_settings
from tablesync.errors import CredentialsNotFoundError

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

CREDENTIALS_DIR_DEFAULT = Path.home() / ".tablesync"
CREDENTIALS_FILE_NAME = "credentials.ionapi"

DEFAULT_API_BASE_URL = "https://mingle-ionapi.inforcloudsuite.com"
DEFAULT_SSO_URL_TEMPLATE = "https://mingle-sso.inforcloudsuite.com:443/{tenant}/as/"

SETTINGS_KEYS = {
    "tenant": "ion_tenant",
    "key_id": "ion_saak",
    "key_secret": "ion_sask",
    "client_id": "ion_client_id",
    "client_secret": "ion_client_secret",
    "api_base_url": "ion_api_url",
    "sso_base_url": "ion_sso_url",
}
ENV_KEYS = {name: key.upper() for name, key in SETTINGS_KEYS.items()}

FILE_KEYS = {
    "tenant": "ti",
    "key_id": "saak",
    "key_secret": "sask",
    "client_id": "ci",
    "client_secret": "cs",
    "api_base_url": "iu",
    "sso_base_url": "pu",
}

_REQUIRED = ("tenant", "key_id", "key_secret", "client_id", "client_secret")


# ── Value type ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Credentials:
    tenant: str = ""
    key_id: str = ""
    key_secret: str = ""
    client_id: str = ""
    client_secret: str = ""
    api_base_url: str = ""
    sso_base_url: str = ""

    def missing_fields(self) -> List[str]:
        return [name for name in _REQUIRED if not getattr(self, name)]

    def with_defaults(self) -> "Credentials":
        """Fill the service URLs from the tenant when they were not supplied."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        if not values["api_base_url"]:
            values["api_base_url"] = DEFAULT_API_BASE_URL
        if not values["sso_base_url"] and self.tenant:
            values["sso_base_url"] = DEFAULT_SSO_URL_TEMPLATE.format(tenant=self.tenant)
        values["api_base_url"] = values["api_base_url"].rstrip("/")
        if values["sso_base_url"] and not values["sso_base_url"].endswith("/"):
            values["sso_base_url"] += "/"
        return Credentials(**values)

    def __repr__(self) -> str:
        return f"Credentials(tenant={self.tenant!r}, client_id={self.client_id!r})"

    @classmethod
    def from_settings(cls, settings: Settings) -> "Credentials":
        return cls(**{name: getattr(settings, key) or "" for name, key in SETTINGS_KEYS.items()})

    @classmethod
    def from_file_data(cls, data: Mapping[str, Any]) -> "Credentials":
        return cls(**{name: str(data.get(key) or "") for name, key in FILE_KEYS.items()})

    def to_file_data(self) -> Dict[str, str]:
        return {key: getattr(self, name) for name, key in FILE_KEYS.items() if getattr(self, name)}


# ── Persistence ───────────────────────────────────────────────────────────────

class CredentialsFile:
    """
    Owner-only credentials file on disk.

    Usage:
        store = CredentialsFile()
        if not store.exists():
            store.save(credentials)
        creds = store.load()
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path else CREDENTIALS_DIR_DEFAULT / CREDENTIALS_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def save(self, credentials: Credentials) -> None:
        """
        Persist credentials with owner-only permissions.

        Directory: 0700 (rwx------)
        File:      0600 (rw-------)
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(self._path.parent, stat.S_IRWXU)  # 0700

        self._path.write_text(json.dumps(credentials.to_file_data(), indent=2))
        os.chmod(self._path, stat.S_IRUSR | stat.S_IWUSR)  # 0600

    def load(self) -> Credentials:
        """
        Raises:
            CredentialsNotFoundError: if the file is absent or not valid JSON.
        """
        if not self._path.exists():
            raise CredentialsNotFoundError(
                f"No credentials file at {self._path}. "
                "Run `python -m tablesync setup` to create one."
            )
        try:
            data = json.loads(self._path.read_text())
        except (OSError, ValueError) as exc:
            raise CredentialsNotFoundError(
                f"Credentials file {self._path} is unreadable: {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise CredentialsNotFoundError(f"Credentials file {self._path} must hold a JSON object")
        return Credentials.from_file_data(data)


# ── Loader ────────────────────────────────────────────────────────────────────

def load_credentials(
    path: Optional[Path] = None,
    settings: Optional[Settings] = None,
) -> Credentials:
    """
    Resolve one complete Credentials value.

    The ION_* settings (environment or `.env`) take priority field by field;
    the credentials file fills whatever they leave empty.

    Raises:
        CredentialsNotFoundError: if required fields are still missing.
    """
    env_creds = Credentials.from_settings(settings or get_settings())

    file_store = CredentialsFile(path)
    file_creds = Credentials()
    if file_store.exists():
        file_creds = file_store.load()
    elif path is not None:
        logger.warning("Credentials file %s not found; using environment only", path)

    merged = Credentials(
        **{
            f.name: getattr(env_creds, f.name) or getattr(file_creds, f.name)
            for f in fields(Credentials)
        }
    ).with_defaults()

    missing = merged.missing_fields()
    if missing:
        env_names = ", ".join(ENV_KEYS[name] for name in missing)
        raise CredentialsNotFoundError(
            f"Missing credentials: {env_names}. Set them in the environment or .env, or "
            "run `python -m tablesync setup`."
        )
    return merged
