"""Identity provider integration.

The managed authentication provider issues RS256-signed ID tokens to the
mobile app. This module:
- Verifies ID tokens against the provider's JSON Web Key Set
- Deletes user identities through the provider's admin REST API

JWKS documents are fetched with httpx and cached; an unknown ``kid`` forces
one refresh so key rotation is picked up without a restart.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from authlib.jose import JsonWebKey, JsonWebToken, KeySet
from authlib.jose.errors import JoseError

if TYPE_CHECKING:
    from snapmeal.core.config import IdentitySettings

logger = logging.getLogger(__name__)

JWKS_CACHE_SECONDS = 3600
CLOCK_SKEW_SECONDS = 60


class IdentityError(Exception):
    """Base exception for identity provider operations."""

    pass


class InvalidTokenError(IdentityError):
    """Raised when an ID token fails verification."""

    pass


class IdentityProviderError(IdentityError):
    """Raised when the provider cannot be reached or returns an error."""

    pass


@dataclass(frozen=True, slots=True)
class CallerIdentity:
    """Verified identity of an API caller.

    Attributes:
        uid: Provider user id (the token's ``sub`` claim).
        email: Email address claim, if the token carries one.
    """

    uid: str
    email: str | None


class IdentityProviderClient:
    """Client for the managed authentication provider."""

    def __init__(
        self,
        settings: IdentitySettings,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Identity provider configuration.
            http_client: Client for provider calls; created lazily if omitted.
        """
        self._settings = settings
        self._http_client = http_client
        self._jwt = JsonWebToken(["RS256"])
        self._key_set: KeySet | None = None
        self._key_set_fetched_at = 0.0

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._settings.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_key_set(self, *, refresh: bool = False) -> KeySet:
        """Fetch and cache the provider's signing keys.

        Raises:
            IdentityProviderError: If the JWKS cannot be fetched.
        """
        expired = time.monotonic() - self._key_set_fetched_at > JWKS_CACHE_SECONDS
        if self._key_set is not None and not refresh and not expired:
            return self._key_set

        if not self._settings.jwks_url:
            raise IdentityProviderError("No JWKS URL configured")

        client = await self._get_http_client()
        try:
            response = await client.get(self._settings.jwks_url)
            response.raise_for_status()
            self._key_set = JsonWebKey.import_key_set(response.json())
        except (httpx.HTTPError, ValueError) as e:
            raise IdentityProviderError(
                f"Failed to fetch JWKS from {self._settings.jwks_url}: {e}"
            ) from e

        self._key_set_fetched_at = time.monotonic()
        logger.debug("Fetched JWKS from %s", self._settings.jwks_url)
        return self._key_set

    def _claims_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"sub": {"essential": True}}
        if self._settings.issuer:
            options["iss"] = {"essential": True, "value": self._settings.issuer}
        if self._settings.audience:
            options["aud"] = {"essential": True, "value": self._settings.audience}
        return options

    def _decode(self, token: str, key_set: KeySet) -> dict[str, Any]:
        claims = self._jwt.decode(token, key_set, claims_options=self._claims_options())
        claims.validate(leeway=CLOCK_SKEW_SECONDS)
        return dict(claims)

    async def verify_id_token(self, token: str) -> CallerIdentity:
        """Verify an ID token and return the caller it identifies.

        Args:
            token: Compact-serialized JWT from the Authorization header.

        Returns:
            CallerIdentity built from the token claims.

        Raises:
            InvalidTokenError: If the signature, issuer, audience or expiry
                do not check out.
            IdentityProviderError: If the signing keys cannot be fetched.
        """
        if not token:
            raise InvalidTokenError("Empty ID token")

        key_set = await self._get_key_set()
        try:
            claims = self._decode(token, key_set)
        except ValueError:
            # authlib raises ValueError when no key matches the token's kid
            key_set = await self._get_key_set(refresh=True)
            try:
                claims = self._decode(token, key_set)
            except (JoseError, ValueError) as e:
                raise InvalidTokenError(f"ID token verification failed: {e}") from e
        except JoseError as e:
            raise InvalidTokenError(f"ID token verification failed: {e}") from e

        uid = claims.get("sub") or ""
        if not uid:
            raise InvalidTokenError("ID token has no subject")
        return CallerIdentity(uid=uid, email=claims.get("email"))

    async def delete_user(self, uid: str) -> bool:
        """Delete a user identity.

        Args:
            uid: Provider user id.

        Returns:
            True if the identity was deleted, False if it did not exist.

        Raises:
            IdentityProviderError: If the provider rejects the request.
        """
        if not self._settings.admin_url:
            raise IdentityProviderError("No identity admin URL configured")

        url = f"{self._settings.admin_url.rstrip('/')}/users/{uid}"
        headers = {}
        admin_token = self._settings.admin_token.get_secret_value()
        if admin_token:
            headers["Authorization"] = f"Bearer {admin_token}"

        client = await self._get_http_client()
        try:
            response = await client.delete(url, headers=headers)
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Failed to delete identity {uid}: {e}") from e

        if response.status_code == 404:
            logger.info("Identity %s already absent at provider", uid)
            return False
        if not response.is_success:
            raise IdentityProviderError(
                f"Failed to delete identity {uid}: provider returned {response.status_code}"
            )

        logger.info("Deleted identity %s", uid)
        return True
