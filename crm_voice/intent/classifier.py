from __future__ import annotations

import re

from crm_voice.orchestrator.events import VoiceCommand

REPORT_KEYWORDS = ("گزارش", "report", "گزارش کار", "کارکرد")
QUESTION_KEYWORDS = ("چی", "چه", "کی", "کجا", "چرا", "چگونه", "آیا", "؟", "?")

# Most specific first; group 1 is the colleague's name.
NAME_PATTERNS = (
    re.compile(r"گزارش\s*کار(?:کرد)?\s+(?:همکار\s+)?(.+)"),
    re.compile(r"کارکرد\s+(?:همکار\s+)?(.+)"),
    re.compile(r"گزارش\s+(?:همکار\s+)?(?!کار(?:کرد)?[\s.،؟?!]*$)(.+)"),
    re.compile(r"report\s+(?:(?:of|for|on)\s+)?(.+)", re.IGNORECASE),
)
_NAME_TRIM = " \t\n.،,؟?!؛;:\"'«»"


class CommandClassifier:
    def analyze(self, text: str) -> VoiceCommand:
        clean = (text or "").strip().lower()

        if any(keyword in clean for keyword in REPORT_KEYWORDS):
            name = self.extract_employee_name(text)
            return VoiceCommand(
                text=text,
                type="report",
                employee_name=name,
                confidence=0.9 if name else 0.6,
            )

        if any(keyword in clean for keyword in QUESTION_KEYWORDS):
            return VoiceCommand(text=text, type="general", confidence=0.8)

        return VoiceCommand(text=text, type="unknown", confidence=0.3)

    @staticmethod
    def extract_employee_name(text: str) -> str | None:
        stripped = (text or "").strip()
        for pattern in NAME_PATTERNS:
            match = pattern.search(stripped)
            if match:
                name = match.group(1).strip(_NAME_TRIM)
                return name or None
        return None


__all__ = ["CommandClassifier"]
