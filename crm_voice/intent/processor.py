from __future__ import annotations

from typing import Any, Protocol

from crm_voice.backend.client import BackendReply
from crm_voice.errors import BackendError
from crm_voice.orchestrator.events import AIResponse, VoiceCommand
from crm_voice.telemetry.logging import get_logger

ANSWER_FIELDS = ("answer", "response", "text")

ASK_FOR_NAME = 'لطفاً نام همکار را مشخص کنید. مثال: "گزارش کار احمد"'
NOT_UNDERSTOOD = "متأسفم، دستور شما را متوجه نشدم. لطفاً دوباره تلاش کنید یا از دستورات مجاز استفاده کنید."
SIGN_IN_REQUIRED = "برای دسترسی به گزارشات، لطفاً وارد سیستم شوید."
REPORT_FAILED = "خطا در دریافت گزارش. لطفاً دوباره تلاش کنید."
NO_ANSWER = "متأسفم، نتوانستم پاسخ مناسبی تولید کنم. لطفاً دوباره بپرسید."
QA_FAILED = "خطا در دریافت پاسخ از هوش مصنوعی. لطفاً دوباره تلاش کنید."


class BackendService(Protocol):
    async def require_session(self) -> None: ...

    async def lookup_report(self, text: str, employee_name: str) -> BackendReply: ...

    async def ask_general(self, text: str) -> BackendReply: ...


class CommandProcessor:
    def __init__(self, backend: BackendService) -> None:
        self._backend = backend
        self._logger = get_logger(__name__)

    async def process(self, command: VoiceCommand) -> AIResponse:
        self._logger.info("command.process", type=command.type, confidence=command.confidence)
        try:
            if command.type == "report":
                return await self._process_report(command)
            if command.type == "general":
                return await self._process_general(command)
        except Exception as exc:  # pragma: no cover - malformed backend payloads
            self._logger.exception("command.process.failed", type=command.type, error=str(exc))
            return AIResponse(text=REPORT_FAILED if command.type == "report" else QA_FAILED, type="error")
        return AIResponse(text=NOT_UNDERSTOOD, type="info")

    async def _process_report(self, command: VoiceCommand) -> AIResponse:
        if not command.employee_name:
            return AIResponse(text=ASK_FOR_NAME, type="info")

        try:
            await self._backend.require_session()
        except BackendError as exc:
            self._logger.warning("command.report.auth_failed", code=exc.code, status=exc.status_code)
            return AIResponse(text=SIGN_IN_REQUIRED, type="error")

        try:
            reply = await self._backend.lookup_report(command.text, command.employee_name)
        except BackendError as exc:
            self._logger.error("command.report.failed", error=exc.detail)
            return AIResponse(text=REPORT_FAILED, type="error")

        body = reply.body if isinstance(reply.body, dict) else {}
        if reply.ok and body.get("success"):
            data = body.get("data") or {}
            if data.get("employee_found"):
                name = data.get("employee_name") or command.employee_name
                analysis = str(data.get("analysis") or "").strip()
                text = f"گزارش همکار {name}:\n\n{analysis}" if analysis else f"گزارش همکار {name} خالی است."
                return AIResponse(text=text, type="success", data=data)
            return AIResponse(
                text=f'همکار "{command.employee_name}" در سیستم یافت نشد. لطفاً نام را بررسی کنید.',
                type="info",
            )

        message = body.get("message") or "خطای نامشخص"
        self._logger.error("command.report.rejected", status=reply.status_code, message=message)
        return AIResponse(text=f"خطا در دریافت گزارش: {message}", type="error")

    async def _process_general(self, command: VoiceCommand) -> AIResponse:
        try:
            reply = await self._backend.ask_general(command.text)
        except BackendError as exc:
            self._logger.error("command.general.failed", error=exc.detail)
            return AIResponse(text=QA_FAILED, type="error")

        if not reply.ok:
            self._logger.error("command.general.rejected", status=reply.status_code)
            return AIResponse(text=QA_FAILED, type="error")

        answer = self._extract_answer(reply.body)
        if answer:
            return AIResponse(text=answer, type="success")
        return AIResponse(text=NO_ANSWER, type="info")

    @staticmethod
    def _extract_answer(body: Any) -> str | None:
        if isinstance(body, str):
            return body.strip() or None
        if isinstance(body, dict):
            for key in ANSWER_FIELDS:
                value = body.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
        return None


__all__ = ["BackendService", "CommandProcessor"]
