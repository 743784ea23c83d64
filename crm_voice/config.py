from __future__ import annotations

import functools
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CaptureSettings(BaseModel):
    engine: Literal["vosk", "none"] = "vosk"
    language: str = "fa-IR"
    fallback_languages: list[str] = Field(default_factory=lambda: ["fa", "ar-SA", "ar", "en-US"])
    timeout_seconds: float = 30.0
    vosk_model_paths: dict[str, str] = Field(default_factory=dict)
    input_device: str | int | None = None
    sample_rate: int = 16_000
    frame_ms: int = 30
    energy_threshold: float = 500.0
    no_speech_seconds: float = 8.0


class SynthesisSettings(BaseModel):
    engine: Literal["kokoro", "none"] = "kokoro"
    kokoro_url: str = "http://localhost:8880/v1/audio/speech"
    kokoro_api_key: str | None = None
    voice_catalog_path: Path
    rate: float = 0.8


class BackendSettings(BaseModel):
    base_url: str
    auth_path: str = "/api/auth/me"
    report_path: str = "/api/voice-analysis/process"
    qa_url: str
    auth_token: str | None = None
    auth_cookie: str = "auth-token"
    timeout_seconds: float = 15.0


class TelemetrySettings(BaseModel):
    log_level: str = "INFO"
    json_logs: bool = True
    otlp_endpoint: str | None = None


class UISettings(BaseModel):
    allowed_origin: str = "http://localhost:3000"


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", ".env.local"), env_file_encoding="utf-8", extra="ignore")

    CRM_API_URL: str = "http://localhost:3000"
    CRM_AUTH_TOKEN: str | None = None
    CRM_AUTH_COOKIE: str = "auth-token"
    CRM_TIMEOUT_SECONDS: float = 15.0
    QA_API_URL: str = "https://mine-gpt-alpha.vercel.app/proxy"
    CAPTURE_ENGINE: Literal["vosk", "none"] = "vosk"
    CAPTURE_LANGUAGE: str = "fa-IR"
    CAPTURE_FALLBACK_LANGUAGES: str = "fa,ar-SA,ar,en-US"
    CAPTURE_TIMEOUT_SECONDS: float = 30.0
    VOSK_MODEL_PATHS: str = ""
    AUDIO_INPUT_DEVICE: str | int | None = None
    AUDIO_SAMPLE_RATE: int = 16_000
    AUDIO_FRAME_MS: int = 30
    AUDIO_ENERGY_THRESHOLD: float = 500.0
    NO_SPEECH_SECONDS: float = 8.0
    SYNTHESIS_ENGINE: Literal["kokoro", "none"] = "kokoro"
    KOKORO_API_URL: str = "http://localhost:8880/v1/audio/speech"
    KOKORO_API_KEY: str | None = None
    VOICE_CATALOG_PATH: str | None = None
    SPEECH_RATE: float = 0.8
    LOG_LEVEL: str = "INFO"
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    UI_ORIGIN: str = "http://localhost:3000"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    @staticmethod
    def _coerce_device(device: str | int | None) -> str | int | None:
        if isinstance(device, str):
            trimmed = device.strip()
            if not trimmed:
                return None
            if trimmed.isdigit():
                return int(trimmed)
            return trimmed
        return device

    @staticmethod
    def _parse_model_paths(raw: str) -> dict[str, str]:
        """Parse ``fa-IR=/models/fa;en-US=/models/en`` into a language → path map."""
        paths: dict[str, str] = {}
        for entry in raw.split(";"):
            if "=" not in entry:
                continue
            lang, path = entry.split("=", 1)
            if lang.strip() and path.strip():
                paths[lang.strip()] = path.strip()
        return paths

    @property
    def capture(self) -> CaptureSettings:
        return CaptureSettings(
            engine=self.CAPTURE_ENGINE,
            language=self.CAPTURE_LANGUAGE,
            fallback_languages=[lang.strip() for lang in self.CAPTURE_FALLBACK_LANGUAGES.split(",") if lang.strip()],
            timeout_seconds=self.CAPTURE_TIMEOUT_SECONDS,
            vosk_model_paths=self._parse_model_paths(self.VOSK_MODEL_PATHS),
            input_device=self._coerce_device(self.AUDIO_INPUT_DEVICE),
            sample_rate=self.AUDIO_SAMPLE_RATE,
            frame_ms=self.AUDIO_FRAME_MS,
            energy_threshold=self.AUDIO_ENERGY_THRESHOLD,
            no_speech_seconds=self.NO_SPEECH_SECONDS,
        )

    @property
    def synthesis(self) -> SynthesisSettings:
        catalog = Path(self.VOICE_CATALOG_PATH) if self.VOICE_CATALOG_PATH else project_root() / "config" / "voices.yml"
        return SynthesisSettings(
            engine=self.SYNTHESIS_ENGINE,
            kokoro_url=self.KOKORO_API_URL,
            kokoro_api_key=self.KOKORO_API_KEY,
            voice_catalog_path=catalog,
            rate=self.SPEECH_RATE,
        )

    @property
    def backend(self) -> BackendSettings:
        return BackendSettings(
            base_url=self.CRM_API_URL,
            qa_url=self.QA_API_URL,
            auth_token=self.CRM_AUTH_TOKEN,
            auth_cookie=self.CRM_AUTH_COOKIE,
            timeout_seconds=self.CRM_TIMEOUT_SECONDS,
        )

    @property
    def telemetry(self) -> TelemetrySettings:
        return TelemetrySettings(
            log_level=self.LOG_LEVEL,
            json_logs=self.ENVIRONMENT != "local",
            otlp_endpoint=self.OTEL_EXPORTER_OTLP_ENDPOINT,
        )

    @property
    def ui(self) -> UISettings:
        return UISettings(allowed_origin=self.UI_ORIGIN)


@functools.lru_cache(maxsize=1)
def load_settings() -> AppSettings:
    return AppSettings()


def project_root() -> Path:
    return Path(__file__).resolve().parents[1]


__all__ = ["AppSettings", "load_settings", "project_root"]
