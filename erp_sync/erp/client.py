import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from erp_sync.core.config import (
    ERP_BASE_URL,
    ERP_COMPANY_DB,
    ERP_PASSWORD,
    ERP_SESSION_REFRESH_PCT,
    ERP_SESSION_TIMEOUT,
    ERP_TIMEOUT,
    ERP_USERNAME,
)
from erp_sync.core.exceptions import ErpApiError, ErpAuthError

log = logging.getLogger("erp_client")


class ErpClient(ABC):
    """
    Minimal interface to the ERP document service.
    Every method returns the parsed JSON body and raises ErpApiError on failure.
    """

    @abstractmethod
    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def patch(self, endpoint: str, data: Dict[str, Any]) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        return None


def _error_message(response: httpx.Response) -> str:
    """Extracts the ERP error text ({"error": {"message": {"value": ...}}})."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, dict):
            message = message.get("value")
        if message:
            return str(message)
    return f"HTTP {response.status_code}"


class HttpErpClient(ErpClient):
    """
    Session-based ERP client on httpx.

    Logs in with company/user/password, keeps the session cookie, refreshes
    the session before it times out and re-authenticates once on a 401.
    """

    def __init__(
        self,
        base_url: str = ERP_BASE_URL,
        company_db: str = ERP_COMPANY_DB,
        username: str = ERP_USERNAME,
        password: str = ERP_PASSWORD,
        timeout: float = ERP_TIMEOUT,
        session_timeout: int = ERP_SESSION_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.company_db = company_db
        self.username = username
        self.password = password
        self.session_timeout = session_timeout
        self._session_expires_at = 0.0
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/",
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
        )

    async def login(self) -> None:
        try:
            response = await self._client.post(
                "Login",
                json={"CompanyDB": self.company_db, "UserName": self.username, "Password": self.password},
            )
        except httpx.HTTPError as e:
            raise ErpApiError(f"ERP login request failed: {e}") from e

        if response.status_code != 200:
            raise ErpAuthError(f"ERP login failed: {_error_message(response)}", status_code=response.status_code)

        body = response.json()
        timeout_minutes = int(body.get("SessionTimeout") or self.session_timeout)
        self._session_expires_at = time.monotonic() + timeout_minutes * 60 * ERP_SESSION_REFRESH_PCT
        log.info(f"ERP session established (timeout {timeout_minutes} min)")

    async def _ensure_session(self) -> None:
        if time.monotonic() >= self._session_expires_at:
            await self.login()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        retry_auth: bool = True,
    ) -> Dict[str, Any]:
        await self._ensure_session()
        try:
            response = await self._client.request(method, endpoint, params=params, json=json)
        except httpx.HTTPError as e:
            raise ErpApiError(f"ERP {method} {endpoint} failed: {e}", context={"endpoint": endpoint}) from e

        if response.status_code == 401:
            if retry_auth:
                log.warning("ERP session rejected, logging in again")
                self._session_expires_at = 0.0
                return await self._request(method, endpoint, params, json, retry_auth=False)
            raise ErpAuthError(f"ERP rejected the session for {endpoint}", status_code=401)

        if response.status_code >= 400:
            raise ErpApiError(
                _error_message(response),
                status_code=response.status_code,
                context={"endpoint": endpoint, "method": method},
            )

        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ErpApiError(f"Invalid JSON from ERP {endpoint}", status_code=response.status_code) from e

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._request("GET", endpoint, params=params)

    async def post(self, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self._request("POST", endpoint, json=data)

    async def patch(self, endpoint: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", endpoint, json=data)

    async def close(self) -> None:
        await self._client.aclose()
