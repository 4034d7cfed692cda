from __future__ import annotations

import logging
import time
from typing import Any, Dict

import httpx

from .errors import AuthError, NotFoundError, UpstreamError
from .log import redact
from .settings import settings

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"User-Agent": "rad-security/mcp-server", "Accept": "application/json"}

# Tokens are valid for four hours; refresh five minutes early.
TOKEN_TTL_SECONDS = 235 * 60


class TokenProvider:
    """Supplies the credential used by every API request.

    A configured session token is returned as-is. Otherwise the access key
    pair is exchanged for a token, which is cached until shortly before it
    expires.
    """

    def __init__(
        self,
        base_url: str,
        account_id: str = "",
        session_token: str = "",
        access_key_id: str = "",
        secret_key: str = "",
    ):
        self.base_url = base_url.rstrip("/")
        self.account_id = account_id
        self.session_token = session_token
        self.access_key_id = access_key_id
        self.secret_key = secret_key
        self._token: str | None = None
        self._expiry: float = 0.0

    def _is_cached(self) -> bool:
        return self._token is not None and time.monotonic() < self._expiry

    async def get_token(self, http: httpx.AsyncClient) -> str:
        if not self.account_id:
            raise AuthError(
                "You can't access the RAD Security API without setting RAD_SECURITY_ACCOUNT_ID."
            )
        if not self.session_token and not (self.access_key_id and self.secret_key):
            raise AuthError(
                "You can't access the RAD Security API without setting RAD_SECURITY_SESSION_TOKEN "
                "or RAD_SECURITY_ACCESS_KEY_ID and RAD_SECURITY_SECRET_KEY."
            )
        if self.session_token:
            return self.session_token
        if self._is_cached():
            return self._token  # type: ignore[return-value]

        try:
            r = await http.post(
                f"{self.base_url}/authentication/authenticate",
                json={"access_key_id": self.access_key_id, "secret_key": self.secret_key},
            )
        except httpx.HTTPError as exc:
            logger.error("auth_attempt_failed: %s", exc)
            raise AuthError(f"Error getting authentication token: {exc}") from exc
        if r.status_code >= 400:
            logger.error("auth_attempt_failed: status=%s", r.status_code)
            raise AuthError(f"Error getting authentication token: HTTP status {r.status_code}")

        self._token = r.json()["token"]
        self._expiry = time.monotonic() + TOKEN_TTL_SECONDS
        logger.info("auth_attempt_succeeded")
        return self._token


class RadSecurityClient:
    def __init__(
        self,
        base_url: str | None = None,
        account_id: str | None = None,
        tenant_id: str | None = None,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.account_id = account_id if account_id is not None else settings.account_id
        self.tenant_id = tenant_id if tenant_id is not None else settings.tenant_id
        self.tokens = token_provider or TokenProvider(
            self.base_url,
            account_id=self.account_id,
            session_token=settings.session_token,
            access_key_id=settings.access_key_id,
            secret_key=settings.secret_key,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def start(self) -> None:
        self._client = httpx.AsyncClient(base_url=self.base_url,
                                         headers=DEFAULT_HEADERS.copy(),
                                         transport=self._transport,
                                         timeout=30)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _auth_headers(self) -> Dict[str, str]:
        assert self._client, "client not started"
        token = await self.tokens.get_token(self._client)
        if token.startswith("ory_st_"):
            return {"Authorization": f"Bearer {token}"}
        return {"Cookie": f"ory_kratos_session={token}"}

    @staticmethod
    def _params(params: Dict[str, Any] | None) -> Dict[str, str]:
        out: Dict[str, str] = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                out[key] = ",".join(str(v) for v in value)
            elif isinstance(value, bool):
                out[key] = "true" if value else "false"
            else:
                out[key] = str(value)
        return out

    async def request(
        self,
        endpoint: str,
        params: Dict[str, Any] | None = None,
        method: str = "GET",
        json: Any = None,
    ) -> Any:
        assert self._client, "client not started"
        headers = await self._auth_headers()
        query = self._params(params)

        logger.debug("api_request_started %s", redact({"endpoint": endpoint, "method": method, "params": query}))
        started = time.monotonic()
        try:
            r = await self._client.request(method, endpoint, params=query, json=json, headers=headers)
        except httpx.HTTPError:
            logger.error("api_request_failed endpoint=%s duration_ms=%d",
                         endpoint, (time.monotonic() - started) * 1000)
            raise

        duration_ms = (time.monotonic() - started) * 1000
        level = logging.ERROR if r.status_code >= 500 else logging.WARNING if r.status_code >= 400 else logging.DEBUG
        logger.log(level, "api_response_received endpoint=%s status=%s duration_ms=%d",
                   endpoint, r.status_code, duration_ms)

        ct = r.headers.get("content-type", "")
        body = r.json() if ct.startswith("application/json") and r.content else r.text
        if r.status_code >= 400:
            raise UpstreamError(r.status_code, body)
        return body

    # ---- helpers shared by operations ----
    def account_path(self, suffix: str = "") -> str:
        return f"/accounts/{self.account_id}{suffix}"

    async def get_tenant_id(self) -> str:
        if self.tenant_id:
            return self.tenant_id
        if not self.account_id:
            raise AuthError(
                "Cannot fetch tenant ID without an account ID. "
                "Set RAD_SECURITY_ACCOUNT_ID or RAD_SECURITY_TENANT_ID."
            )
        account = await self.request(self.account_path())
        parent_id = account.get("parent_id") if isinstance(account, dict) else None
        if not parent_id:
            raise NotFoundError(f"No parent_id found for account: {self.account_id}")
        self.tenant_id = parent_id
        return parent_id
