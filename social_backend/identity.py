"""
Identity provider abstraction (Clerk) and an in-memory test implementation.

The API only needs two capabilities from the provider: verifying a session
token to learn who is calling, and fetching that identity's profile
attributes when a local user record is first created.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

from social_backend.errors import IdentityProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthState:
    is_authenticated: bool
    external_id: Optional[str] = None


ANONYMOUS = AuthState(is_authenticated=False)


@dataclass(frozen=True)
class ExternalProfile:
    external_id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    image_url: str = ""


class IdentityProvider(Protocol):
    """Operations the API needs from the external identity provider."""

    def authenticate(self, token: Optional[str]) -> AuthState:
        ...

    def fetch_profile(self, external_id: str) -> ExternalProfile:
        ...


def _decode_unverified_claims(token: str) -> dict:
    """Read the payload of a JWT without checking its signature."""
    parts = token.split(".")
    if len(parts) != 3:
        return {}
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return {}
    return claims if isinstance(claims, dict) else {}


@dataclass
class InMemoryIdentityProvider:
    """Test double: session tokens map straight to external ids."""

    sessions: dict = field(default_factory=dict)
    profiles: dict = field(default_factory=dict)

    def add_user(
        self,
        external_id: str,
        email: str,
        *,
        token: Optional[str] = None,
        first_name: str = "",
        last_name: str = "",
        image_url: str = "",
    ) -> str:
        """Register a profile and a session for it; returns the token."""
        token = token or f"session-{external_id}"
        self.sessions[token] = external_id
        self.profiles[external_id] = ExternalProfile(
            external_id=external_id,
            email=email,
            first_name=first_name,
            last_name=last_name,
            image_url=image_url,
        )
        return token

    def reset(self) -> None:
        self.sessions.clear()
        self.profiles.clear()

    def authenticate(self, token: Optional[str]) -> AuthState:
        external_id = self.sessions.get(token) if token else None
        if not external_id:
            return ANONYMOUS
        return AuthState(is_authenticated=True, external_id=external_id)

    def fetch_profile(self, external_id: str) -> ExternalProfile:
        profile = self.profiles.get(external_id)
        if profile is None:
            raise IdentityProviderError(f"Unknown identity {external_id}")
        return profile


class ClerkIdentityProvider:
    """
    Clerk Backend API client. Sessions are verified server-side against Clerk
    so no signing keys have to be distributed to the service.

    TODO: ``POST /sessions/{sid}/verify`` is deprecated by Clerk; move to
    networkless verification against the instance JWKS when a JWT library
    joins the dependency set.
    """

    def __init__(
        self,
        secret_key: str,
        api_url: str = "https://api.clerk.com/v1",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ):
        if not secret_key:
            raise ValueError("CLERK_SECRET_KEY is required for ClerkIdentityProvider")
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {secret_key}"})

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.api_url}{path}"
        try:
            return self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise IdentityProviderError(f"Clerk request failed: {exc}") from exc

    def authenticate(self, token: Optional[str]) -> AuthState:
        if not token:
            return ANONYMOUS
        # The unverified sid only routes the call; Clerk's verify response is
        # the sole source of trust for the session and its user id.
        session_id = _decode_unverified_claims(token).get("sid")
        if not session_id:
            return ANONYMOUS

        response = self._request(
            "POST", f"/sessions/{session_id}/verify", json={"token": token}
        )
        if 400 <= response.status_code < 500:
            logger.info(
                "Clerk rejected session %s (%d)", session_id, response.status_code
            )
            return ANONYMOUS
        if response.status_code >= 500:
            raise IdentityProviderError(
                f"Clerk session verify returned {response.status_code}"
            )

        data = response.json()
        if data.get("status") != "active" or not data.get("user_id"):
            return ANONYMOUS
        return AuthState(is_authenticated=True, external_id=data["user_id"])

    def fetch_profile(self, external_id: str) -> ExternalProfile:
        response = self._request("GET", f"/users/{external_id}")
        if response.status_code != 200:
            raise IdentityProviderError(
                f"Clerk user lookup for {external_id} returned {response.status_code}"
            )
        data = response.json()

        addresses = data.get("email_addresses") or []
        primary_id = data.get("primary_email_address_id")
        primary = next(
            (a for a in addresses if a.get("id") == primary_id),
            addresses[0] if addresses else None,
        )
        if not primary or not primary.get("email_address"):
            raise IdentityProviderError(f"Clerk user {external_id} has no email")

        return ExternalProfile(
            external_id=external_id,
            email=primary["email_address"],
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            image_url=data.get("image_url") or "",
        )


def extract_session_token(
    authorization: Optional[str], session_cookie: Optional[str]
) -> Optional[str]:
    """Bearer header wins; Clerk's ``__session`` cookie is the browser fallback."""
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return session_cookie or None
