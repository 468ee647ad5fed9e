"""
OAuth token handling for Microsoft To Do.

Tokens are obtained with the device-code flow and kept fresh with the
refresh-token grant. Tokens live in ``SyncSettings`` and are persisted
through ``save_callback`` whenever they change.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import requests

from ..core.exceptions import AuthenticationFailedError
from ..core.models import SyncSettings


AUTHORITY = "https://login.microsoftonline.com"
SCOPES = "Tasks.ReadWrite offline_access"
DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

EXPIRY_MARGIN_SECONDS = 60
DEFAULT_POLL_INTERVAL = 5
SLOW_DOWN_STEP = 5


def build_auth_hint(code: str, description: str) -> str:
    """Remediation advice for common identity platform errors."""
    merged = f"{code} {description}".lower()
    if "unauthorized_client" in merged or "public client" in merged or "7000218" in merged:
        return "Enable 'Allow public client flows' under Authentication in the Azure app registration"
    if "invalid_scope" in merged:
        return "Make sure the 'Tasks.ReadWrite' and 'offline_access' permissions are added and granted"
    if "interaction_required" in merged or "invalid_grant" in merged:
        return "Run 'mtd-sync login' again and authorize in the browser"
    return ""


def format_auth_failure(prefix: str, payload: Any, status: Optional[int] = None, text: str = "") -> str:
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        description = str(payload.get("error_description") or "").strip()
        hint = build_auth_hint(payload["error"], description)
        parts = [
            prefix,
            f"HTTP {status}" if status else "",
            f"Error: {payload['error']}",
            f"Description: {description}" if description else "",
            f"Suggestion: {hint}" if hint else "",
        ]
        return "\n".join(part for part in parts if part)
    text = (text or "").strip()
    if text:
        return f"{prefix}\nHTTP {status or ''}\n{text}".strip()
    return f"{prefix} (HTTP {status})" if status else prefix


class TokenProvider:
    """Supplies valid access tokens to the remote client."""

    def __init__(
        self,
        settings: SyncSettings,
        session: Optional[requests.Session] = None,
        save_callback: Optional[Callable[[], None]] = None,
        interactive: bool = False,
        prompt: Callable[[str], None] = print,
        timeout: float = 30,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.session = session or requests.Session()
        self.save_callback = save_callback
        self.interactive = interactive
        self.prompt = prompt
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)

    # Helpers

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _endpoint(self, name: str) -> str:
        tenant = quote(self.settings.tenant_id or "common", safe="")
        return f"{AUTHORITY}/{tenant}/oauth2/v2.0/{name}"

    def _save(self) -> None:
        if self.save_callback is not None:
            self.save_callback()

    def _post(self, name: str, data: Dict[str, str]) -> requests.Response:
        try:
            return self.session.post(self._endpoint(name), data=data, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise AuthenticationFailedError(f"Cannot reach {AUTHORITY}: {exc}") from exc

    @staticmethod
    def _json(response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    def _store_token(self, payload: Dict[str, Any]) -> str:
        access_token = payload.get("access_token")
        if not access_token:
            raise AuthenticationFailedError("Token response did not contain an access token")
        expires_in = int(payload.get("expires_in") or 0)
        self.settings.access_token = access_token
        self.settings.access_token_expires_at = self._now_ms() + max(0, expires_in - EXPIRY_MARGIN_SECONDS) * 1000
        if payload.get("refresh_token"):
            self.settings.refresh_token = payload["refresh_token"]
        self._save()
        return access_token

    # Public API

    def has_valid_token(self) -> bool:
        return bool(
            self.settings.access_token
            and self.settings.access_token_expires_at > self._now_ms() + EXPIRY_MARGIN_SECONDS * 1000
        )

    def is_logged_in(self) -> bool:
        return bool(self.settings.refresh_token) or self.has_valid_token()

    def get_valid_access_token(self, force_refresh: bool = False) -> Optional[str]:
        """
        Return a usable access token, refreshing it when needed.

        Returns None when no client id is configured, or when neither the
        cached token nor a refresh works and interactive login is disabled.
        """
        if not self.settings.client_id:
            self.logger.warning("No Azure client id configured; set clientId in the state file")
            return None

        if not force_refresh and self.has_valid_token():
            return self.settings.access_token

        if self.settings.refresh_token:
            try:
                return self.refresh()
            except AuthenticationFailedError as exc:
                self.logger.warning(f"Token refresh failed: {exc}")
                if exc.error_code in ("invalid_grant", "interaction_required"):
                    self.settings.refresh_token = ""
                    self._save()

        if self.interactive:
            try:
                return self.login()
            except AuthenticationFailedError as exc:
                self.logger.error(f"Interactive login failed: {exc}")
        return None

    def refresh(self) -> str:
        response = self._post("token", {
            "client_id": self.settings.client_id,
            "grant_type": "refresh_token",
            "refresh_token": self.settings.refresh_token,
            "scope": SCOPES,
        })
        payload = self._json(response)
        if response.status_code >= 400 or not isinstance(payload, dict):
            code = payload.get("error") if isinstance(payload, dict) else None
            raise AuthenticationFailedError(
                format_auth_failure("Failed to refresh token", payload, response.status_code, response.text),
                code,
            )
        self.logger.debug("Access token refreshed")
        return self._store_token(payload)

    def start_device_login(self) -> Dict[str, Any]:
        """Request a device code; the result carries ``user_code`` and ``verification_uri``."""
        response = self._post("devicecode", {"client_id": self.settings.client_id, "scope": SCOPES})
        payload = self._json(response)
        if (
            response.status_code >= 400
            or not isinstance(payload, dict)
            or isinstance(payload.get("error"), str)
            or not all(payload.get(key) for key in ("device_code", "user_code", "verification_uri"))
        ):
            code = payload.get("error") if isinstance(payload, dict) else None
            raise AuthenticationFailedError(
                format_auth_failure("Failed to get device code", payload, response.status_code, response.text),
                code,
            )
        return payload

    def poll_device_login(self, device: Dict[str, Any]) -> str:
        """Poll the token endpoint until the user finishes signing in."""
        interval = int(device.get("interval") or DEFAULT_POLL_INTERVAL)
        deadline = self.clock() + int(device.get("expires_in") or 900)
        data = {
            "client_id": self.settings.client_id,
            "grant_type": DEVICE_CODE_GRANT,
            "device_code": device["device_code"],
        }

        while self.clock() < deadline:
            response = self._post("token", data)
            payload = self._json(response)
            if response.status_code == 200 and isinstance(payload, dict):
                return self._store_token(payload)

            error = payload.get("error") if isinstance(payload, dict) else None
            if error == "authorization_pending":
                self.sleep(interval)
                continue
            if error == "slow_down":
                interval += SLOW_DOWN_STEP
                self.sleep(interval)
                continue
            raise AuthenticationFailedError(
                format_auth_failure("Failed to get access token", payload, response.status_code, response.text),
                error,
            )

        raise AuthenticationFailedError("Device code expired before authorization", "expired_token")

    def login(self) -> str:
        """Run the full device-code flow, reporting instructions through ``prompt``."""
        device = self.start_device_login()
        message = device.get("message") or (
            f"Visit {device['verification_uri']} in a browser and enter code {device['user_code']}"
        )
        self.prompt(message)
        token = self.poll_device_login(device)
        self.logger.info("Signed in to Microsoft To Do")
        return token

    def logout(self) -> None:
        self.settings.access_token = ""
        self.settings.refresh_token = ""
        self.settings.access_token_expires_at = 0
        self._save()
