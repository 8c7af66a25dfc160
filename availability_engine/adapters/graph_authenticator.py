"""
Microsoft Graph authentication using MSAL (Device Code Flow).

The token cache lives in the system keyring; when no keyring backend is
usable it falls back to a user-only file. The engine itself never sees
this module: the CLI turns its token into an adapter.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import keyring
import msal
from keyring.errors import KeyringError
from rich.console import Console

from ..domain.exceptions import UpstreamUnavailable

logger = logging.getLogger(__name__)
console = Console(stderr=True)

KEYRING_SERVICE_NAME = "availability-engine"


class GraphAuthenticator:
    """
    Handles authentication with Microsoft Graph API using Device Code Flow.

    This flow suits a CLI run by clinic staff:
    1. The app displays a code and URL
    2. The user signs in from any browser and enters the code
    3. The app receives a token and caches it for the next run
    """

    # Reading busy times and writing appointments for shared clinician calendars
    SCOPES = ["Calendars.ReadWrite.Shared", "Calendars.ReadWrite"]

    def __init__(
        self,
        client_id: str,
        tenant_id: str,
        authority_url: str | None = None,
        cache_file: Path | None = None,
    ):
        self.client_id = client_id
        self.tenant_id = tenant_id
        self.authority = authority_url or f"https://login.microsoftonline.com/{tenant_id}"
        self.cache_file = cache_file or Path.home() / ".availability_engine_token_cache.json"

        self._key_identifier = f"{self.client_id}:{self.tenant_id}"
        self._use_keyring = True
        self.cache = self._load_cache()

        self.app = msal.PublicClientApplication(
            client_id=self.client_id,
            authority=self.authority,
            token_cache=self.cache,
        )

    @property
    def cache_backend(self) -> str:
        """Return the active cache backend (keyring or file)."""
        return "keyring" if self._use_keyring else "file"

    def get_access_token(self, force_refresh: bool = False) -> str:
        """
        Get a valid access token, using cache or requesting a new one.

        Raises:
            UpstreamUnavailable: If authentication fails
        """
        if not force_refresh:
            accounts = self.app.get_accounts()
            if accounts:
                result = self.app.acquire_token_silent(scopes=self.SCOPES, account=accounts[0])
                if result and "access_token" in result:
                    self._save_cache()
                    return result["access_token"]

        return self._authenticate_device_code_flow()

    def clear_cache(self) -> None:
        """Forget cached tokens (forces re-authentication next time)."""
        try:
            keyring.delete_password(KEYRING_SERVICE_NAME, self._key_identifier)
        except KeyringError as exc:
            logger.debug("No keyring entry removed: %s", exc)
        if self.cache_file.exists():
            self.cache_file.unlink()
        self.cache = msal.SerializableTokenCache()

    def _authenticate_device_code_flow(self) -> str:
        flow = self.app.initiate_device_flow(scopes=self.SCOPES)

        if "user_code" not in flow:
            raise UpstreamUnavailable(
                f"Failed to initiate device flow: {flow.get('error_description', 'Unknown error')}"
            )

        console.print("\n[bold cyan]Microsoft sign-in required[/bold cyan]")
        console.print(f"1. Open [bold cyan]{flow['verification_uri']}[/bold cyan]")
        console.print(f"2. Enter the code [bold yellow]{flow['user_code']}[/bold yellow]")
        console.print("[dim]Waiting for authentication...[/dim]\n")

        result = self.app.acquire_token_by_device_flow(flow)

        if "access_token" not in result:
            error = result.get("error_description", "Unknown error")
            raise UpstreamUnavailable(f"Authentication failed: {error}")

        self._save_cache()
        return result["access_token"]

    def _load_cache(self) -> msal.SerializableTokenCache:
        cache = msal.SerializableTokenCache()

        serialized = self._read_keyring()
        if serialized is None:
            serialized = self._read_file()

        if serialized:
            try:
                cache.deserialize(serialized)
            except ValueError as exc:
                logger.warning("Could not deserialize token cache: %s", exc)

        return cache

    def _save_cache(self) -> None:
        if not self.cache.has_state_changed:
            return

        serialized = self.cache.serialize()
        if self._use_keyring:
            try:
                keyring.set_password(KEYRING_SERVICE_NAME, self._key_identifier, serialized)
                return
            except KeyringError as exc:
                self._disable_keyring(f"writing credentials failed: {exc}")

        self._write_file(serialized)

    def _read_keyring(self) -> Optional[str]:
        if not self._use_keyring:
            return None
        try:
            return keyring.get_password(KEYRING_SERVICE_NAME, self._key_identifier)
        except KeyringError as exc:
            self._disable_keyring(f"reading credentials failed: {exc}")
            return None

    def _read_file(self) -> Optional[str]:
        if not self.cache_file.exists():
            return None
        try:
            return self.cache_file.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not load token cache file %s: %s", self.cache_file, exc)
            return None

    def _write_file(self, serialized: str) -> None:
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            self.cache_file.write_text(serialized, encoding="utf-8")
            # Owner-only permissions
            self.cache_file.chmod(0o600)
        except OSError as exc:
            logger.warning("Could not save token cache to %s: %s", self.cache_file, exc)

    def _disable_keyring(self, reason: str) -> None:
        logger.warning(
            "Secure credential storage unavailable (%s). Falling back to plaintext cache.",
            reason,
        )
        self._use_keyring = False
