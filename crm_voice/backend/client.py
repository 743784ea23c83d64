from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from crm_voice.config import BackendSettings
from crm_voice.errors import BackendError
from crm_voice.telemetry.logging import get_logger


@dataclass(slots=True)
class BackendReply:
    status_code: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class CrmBackendClient:
    """HTTP access to the CRM auth/report endpoints and the general QA service."""

    def __init__(self, settings: BackendSettings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        headers = {"Accept": "application/json"}
        cookies: dict[str, str] = {}
        if settings.auth_token:
            headers["Authorization"] = f"Bearer {settings.auth_token}"
            cookies[settings.auth_cookie] = settings.auth_token
        timeout = httpx.Timeout(settings.timeout_seconds, connect=5.0)
        self._crm = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            headers=headers,
            cookies=cookies,
            timeout=timeout,
            transport=transport,
        )
        self._qa = httpx.AsyncClient(headers={"Accept": "application/json"}, timeout=timeout, transport=transport)
        self._logger = get_logger(__name__)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return response.text or None

    async def _send(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> BackendReply:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            self._logger.error("backend.transport_error", method=method, url=url, error=str(exc))
            raise BackendError("transport", detail=str(exc)) from exc
        reply = BackendReply(status_code=response.status_code, body=self._decode(response))
        self._logger.info("backend.response", method=method, url=url, status=reply.status_code)
        return reply

    async def require_session(self) -> None:
        """Raise ``BackendError('unauthenticated')`` unless the auth check confirms a session."""
        reply = await self._send(self._crm, "GET", self._settings.auth_path)
        if not reply.ok or not isinstance(reply.body, dict) or not reply.body.get("success"):
            raise BackendError("unauthenticated", status_code=reply.status_code)

    async def lookup_report(self, text: str, employee_name: str) -> BackendReply:
        return await self._send(
            self._crm,
            "POST",
            self._settings.report_path,
            json={"text": text, "employeeName": employee_name},
        )

    async def ask_general(self, text: str) -> BackendReply:
        return await self._send(self._qa, "GET", self._settings.qa_url, params={"text": text})

    async def aclose(self) -> None:
        await self._crm.aclose()
        await self._qa.aclose()


__all__ = ["BackendReply", "CrmBackendClient"]
