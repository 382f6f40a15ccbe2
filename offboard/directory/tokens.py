"""Access tokens for the directory API, per tenant.

The dispatcher runs outside any user session, so it authenticates with the
tenant's application credentials (OAuth2 client-credentials grant).
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

import backoff
import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from offboard.config import get_settings
from offboard.core.datetime_utils import utc_now
from offboard.core.logging import get_logger
from offboard.core.security import CredentialEncryptionError, decrypt_secret
from offboard.models.tenant import TenantCredential

logger = get_logger(__name__)

# Refresh tokens this long before they actually expire
EXPIRY_MARGIN = timedelta(seconds=60)


class TokenAcquisitionError(Exception):
    """No usable access token could be obtained for a tenant."""


class TokenProvider(Protocol):
    async def get_access_token(self, tenant_id: str) -> str: ...


def _is_client_error(e: Exception) -> bool:
    return isinstance(e, httpx.HTTPStatusError) and e.response.status_code < 500


class ClientCredentialsTokenProvider:
    """Fetches app-only tokens using credentials stored in tenant_credentials."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        authority: str | None = None,
        scope: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.session_factory = session_factory
        self.authority = (authority or settings.graph_authority).rstrip("/")
        self.scope = scope or settings.graph_scope
        self.timeout = settings.graph_timeout_seconds
        self._transport = transport
        self._cache: dict[str, tuple[str, datetime]] = {}

    async def get_access_token(self, tenant_id: str) -> str:
        cached = self._cache.get(tenant_id)
        if cached and cached[1] > utc_now():
            return cached[0]

        async with self.session_factory() as db:
            credential = await db.get(TenantCredential, tenant_id)

        if credential is None:
            raise TokenAcquisitionError(f"No directory credentials registered for tenant {tenant_id}")

        try:
            client_secret = decrypt_secret(credential.client_secret_encrypted)
        except CredentialEncryptionError as e:
            raise TokenAcquisitionError(f"Credentials for tenant {tenant_id} are unreadable: {e}") from e

        try:
            token, expires_in = await self._request_token(credential, client_secret)
        except httpx.HTTPStatusError as e:
            raise TokenAcquisitionError(
                f"Token endpoint returned {e.response.status_code}: {_error_description(e.response)}"
            ) from e
        except httpx.HTTPError as e:
            raise TokenAcquisitionError(f"Token request failed: {e}") from e

        self._cache[tenant_id] = (token, utc_now() + timedelta(seconds=expires_in) - EXPIRY_MARGIN)
        logger.bind(tenant_id=tenant_id, expires_in=expires_in).info("directory_token_acquired")
        return token

    @backoff.on_exception(
        backoff.expo,
        (httpx.TransportError, httpx.HTTPStatusError),
        max_tries=3,
        max_time=30,
        giveup=_is_client_error,
    )
    async def _request_token(self, credential: TenantCredential, client_secret: str) -> tuple[str, int]:
        url = f"{self.authority}/{credential.directory_tenant_id}/oauth2/v2.0/token"
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": credential.client_id,
                    "client_secret": client_secret,
                    "scope": self.scope,
                },
            )
        response.raise_for_status()

        payload = response.json()
        if "access_token" not in payload:
            raise TokenAcquisitionError("Token response did not contain an access_token")
        return payload["access_token"], int(payload.get("expires_in", 3600))


def _error_description(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.reason_phrase
    return payload.get("error_description") or payload.get("error") or response.reason_phrase
