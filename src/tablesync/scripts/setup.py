"""
Interactive setup wizard for tablesync.

Collects the remote query service credentials once, optionally checks them
against the token endpoint, and saves them to ~/.tablesync/credentials.ionapi
with owner-only permissions (0700 dir / 0600 file).

Values can be typed in, or imported from the `.ionapi` file downloaded from
the provider console. Environment variables (ION_TENANT, ION_SAAK, ...)
still take priority over the saved file at runtime.

Usage:
    python -m tablesync setup
    python -m tablesync.scripts.setup   (direct invocation)
"""
import asyncio
import getpass
import sys
from pathlib import Path

from tablesync.errors import AuthError
from tablesync.remote.auth import TokenCache
from tablesync.remote.credentials import CredentialsFile, Credentials


def _prompt(label: str, secret: bool = False, default: str = "") -> str:
    suffix = f" [{default}]" if default else ""
    if secret:
        value = getpass.getpass(f"{label}{suffix}: ")
    else:
        value = input(f"{label}{suffix}: ").strip()
    return value or default


def _collect() -> Credentials:
    imported = input("Path to a downloaded .ionapi file (Enter to type values): ").strip()
    if imported:
        return CredentialsFile(Path(imported).expanduser()).load()

    tenant = _prompt("Tenant id")
    return Credentials(
        tenant=tenant,
        key_id=_prompt("Service account access key (saak)"),
        key_secret=_prompt("Service account secret key (sask)", secret=True),
        client_id=_prompt("Client id"),
        client_secret=_prompt("Client secret", secret=True),
        api_base_url=_prompt("API base URL (Enter for default)"),
        sso_base_url=_prompt("SSO URL (Enter for default)"),
    )


def run_setup() -> None:
    store = CredentialsFile()

    print("\nTable Sync: remote query service setup\n")
    print(f"Credentials will be stored in: {store.path}\n")

    if store.exists():
        print("An existing credentials file was found.")
        overwrite = input("Overwrite it? [y/N] ").strip().lower()
        if overwrite != "y":
            print("Setup cancelled. Existing credentials unchanged.")
            sys.exit(0)

    try:
        credentials = _collect().with_defaults()
    except AuthError as exc:
        print(f"\nError: {exc}")
        sys.exit(1)

    missing = credentials.missing_fields()
    if missing:
        print(f"Error: missing {', '.join(missing)}.")
        sys.exit(1)

    verify = input("Request a token now to check the credentials? [Y/n] ").strip().lower()
    if verify != "n":
        print("\nRequesting a token...")
        try:
            asyncio.run(TokenCache(credentials).get_token())
        except AuthError as exc:
            print(f"\nToken request failed: {exc}")
            print("Check the values and try again.")
            sys.exit(1)
        print("Token request succeeded.")

    store.save(credentials)
    print(f"\nCredentials saved to {store.path}")
    print(f"   Permissions: file={oct(store.path.stat().st_mode)[-3:]}")
    print("Re-run `python -m tablesync setup` whenever the service account changes.\n")


if __name__ == "__main__":
    run_setup()
