"""Typed failures raised by the voice pipeline.

Every error carries a machine-readable ``code`` and a Persian ``message`` that is
safe to speak back to the user.
"""

from __future__ import annotations

from typing import Literal

CaptureErrorCode = Literal[
    "unsupported",
    "already-active",
    "timeout",
    "network",
    "permission-denied",
    "no-speech",
    "audio-capture",
    "language-unsupported",
    "manual-input-cancelled",
    "manual-input-empty",
    "aborted",
    "recognition-failed",
]

SynthesisErrorCode = Literal["network", "synthesis-failed", "synthesis-unavailable"]

BackendErrorCode = Literal["unauthenticated", "transport"]


class VoiceError(Exception):
    code: str = "voice-error"
    messages: dict[str, str] = {}

    def __init__(self, code: str | None = None, message: str | None = None, detail: str | None = None) -> None:
        self.code = code or self.code
        self.detail = detail
        self.message = message or self.messages.get(self.code) or self._fallback_message()
        super().__init__(self.message)

    def _fallback_message(self) -> str:
        return f"خطای نامشخص: {self.detail or self.code}"


class CaptureError(VoiceError):
    code = "recognition-failed"
    messages = {
        "unsupported": "تشخیص گفتار پشتیبانی نمی‌شود",
        "already-active": "در حال حاضر در حال گوش دادن است",
        "timeout": "زمان تشخیص گفتار به پایان رسید. لطفاً دوباره تلاش کنید.",
        "network": "خطا در اتصال به سرویس تشخیص گفتار. لطفاً اتصال اینترنت خود را بررسی کنید.",
        "permission-denied": "دسترسی به میکروفون مجاز نیست. لطفاً دسترسی را فعال کنید.",
        "no-speech": "صدایی تشخیص داده نشد. لطفاً دوباره تلاش کنید.",
        "audio-capture": "خطا در ضبط صدا. لطفاً میکروفون خود را بررسی کنید.",
        "language-unsupported": "هیچ زبانی برای تشخیص گفتار کار نکرد",
        "manual-input-cancelled": "کاربر عملیات را لغو کرد",
        "manual-input-empty": "متن خالی وارد شده است",
        "aborted": "تشخیص گفتار متوقف شد",
    }

    # Platform error codes as reported by recognition engines.
    platform_codes = {
        "network": "network",
        "not-allowed": "permission-denied",
        "service-not-allowed": "permission-denied",
        "no-speech": "no-speech",
        "audio-capture": "audio-capture",
        "language-not-supported": "language-unsupported",
        "aborted": "aborted",
    }

    @classmethod
    def from_platform(cls, platform_code: str | None) -> "CaptureError":
        code = cls.platform_codes.get(platform_code or "")
        if code is None:
            return cls("recognition-failed", message=f"خطا در تشخیص گفتار: {platform_code}", detail=platform_code)
        return cls(code, detail=platform_code)

    @property
    def retryable(self) -> bool:
        return self.code == "network"


class SynthesisError(VoiceError):
    code = "synthesis-failed"
    messages = {
        "network": "خطا در اتصال شبکه برای پخش صدا",
        "synthesis-failed": "خطا در تولید صدا",
        "synthesis-unavailable": "سرویس تولید صدا در دسترس نیست",
    }


class BackendError(VoiceError):
    code = "transport"
    messages = {
        "unauthenticated": "برای دسترسی به گزارشات، لطفاً وارد سیستم شوید.",
        "transport": "خطا در ارتباط با سرور",
    }

    def __init__(
        self,
        code: str | None = None,
        message: str | None = None,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(code, message, detail)
        self.status_code = status_code


class SessionBusyError(VoiceError):
    code = "busy"
    messages = {"busy": "در حال حاضر درخواست دیگری در حال پردازش است"}


class SessionCancelledError(VoiceError):
    code = "cancelled"
    messages = {"cancelled": "پردازش صوتی متوقف شد"}


class StateTransitionError(RuntimeError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"invalid session transition {current} -> {target}")
        self.current = current
        self.target = target


__all__ = [
    "BackendError",
    "BackendErrorCode",
    "CaptureError",
    "CaptureErrorCode",
    "SessionBusyError",
    "SessionCancelledError",
    "StateTransitionError",
    "SynthesisError",
    "SynthesisErrorCode",
    "VoiceError",
]
