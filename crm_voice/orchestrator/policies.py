from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class CapturePolicies:
    language: str = "fa-IR"
    # The primary language's bare tag first, then the alternates.
    fallback_languages: tuple[str, ...] = ("fa", "ar-SA", "ar", "en-US")
    timeout_seconds: float = 30.0
    fallback_timeout_seconds: float = 10.0
    max_network_retries: int = 3
    retry_delay_seconds: float = 2.0
    max_alternatives: int = 3
    manual_prompt: str = (
        "تشخیص گفتار کار نکرد. لطفاً متن خود را تایپ کنید:\n\n"
        'مثال: "گزارش کار احمد" یا "چطور حالت؟"'
    )


@dataclass
class SynthesisPolicies:
    summary_threshold: int = 500
    summary_max_chars: int = 300
    chunk_max_chars: int = 150
    chunk_pause_seconds: float = 0.5
    rate: float = 0.8
    pitch: float = 1.0
    volume: float = 1.0
    primary_language: str = "fa"
    secondary_language: str = "ar"
    neutral_language: str = "en-US"
    quality_providers: tuple[str, ...] = ("google",)
    female_markers: tuple[str, ...] = ("female", "woman", "زن")
    test_sentence: str = "سلام، این یک تست صدای فارسی است. آیا صدا به درستی شنیده می‌شود؟"


@dataclass
class SessionPolicies:
    probe_microphone: bool = True
    manual_fallback: bool = True
    # Capture failures that mean speech input is structurally unavailable.
    manual_fallback_codes: frozenset[str] = field(
        default_factory=lambda: frozenset({"unsupported", "permission-denied", "audio-capture"})
    )
    error_prefix: str = "متأسفم، خطایی رخ داد: "


__all__ = ["CapturePolicies", "SessionPolicies", "SynthesisPolicies"]
