from __future__ import annotations

import asyncio

import pytest

from crm_voice.backend.client import BackendReply
from crm_voice.errors import BackendError
from crm_voice.transcription.base import (
    RecognitionAlternative,
    RecognitionEngine,
    RecognitionEvent,
    RecognitionItem,
    RecognitionListener,
    RecognitionRequest,
)
from crm_voice.tts.base import SynthesisEngine, SynthesisEvent, SynthesisListener, Utterance, Voice


@pytest.fixture
def anyio_backend():
    return "asyncio"


def final(text: str) -> RecognitionEvent:
    item = RecognitionItem(alternatives=(RecognitionAlternative(transcript=text, confidence=0.9),), is_final=True)
    return RecognitionEvent(kind="result", results=(item,))


def interim(text: str) -> RecognitionEvent:
    item = RecognitionItem(alternatives=(RecognitionAlternative(transcript=text),), is_final=False)
    return RecognitionEvent(kind="result", results=(item,))


def failure(code: str) -> RecognitionEvent:
    return RecognitionEvent(kind="error", error=code)


def ended() -> RecognitionEvent:
    return RecognitionEvent(kind="end")


class FakeRecognitionEngine(RecognitionEngine):
    """Replays one scripted event list per ``start`` call; an exhausted script never answers."""

    def __init__(
        self,
        scripts: list[list[RecognitionEvent]] | None = None,
        available: bool = True,
        microphone: bool = True,
    ) -> None:
        self.scripts = list(scripts or [])
        self.available = available
        self.microphone = microphone
        self.requests: list[RecognitionRequest] = []
        self.listener: RecognitionListener | None = None
        self.stop_calls = 0
        self.abort_calls = 0

    def is_available(self) -> bool:
        return self.available

    def start(self, request: RecognitionRequest, listener: RecognitionListener) -> None:
        self.requests.append(request)
        self.listener = listener
        events = self.scripts.pop(0) if self.scripts else []
        loop = asyncio.get_running_loop()
        loop.call_soon(listener, RecognitionEvent(kind="start"))
        for event in events:
            loop.call_soon(listener, event)

    def stop(self) -> None:
        self.stop_calls += 1

    def abort(self) -> None:
        self.abort_calls += 1

    async def probe_microphone(self) -> bool:
        return self.microphone

    @property
    def languages(self) -> list[str]:
        return [request.lang for request in self.requests]


class FakeSynthesisEngine(SynthesisEngine):
    """Finishes each utterance on the next loop turn unless ``hold`` is set or a failure is scripted."""

    def __init__(
        self,
        voices: list[Voice] | None = None,
        available: bool = True,
        fail_with: str | None = None,
        hold: bool = False,
    ) -> None:
        self._voices = list(voices or [])
        self.available = available
        self.fail_with = fail_with
        self.hold = hold
        self.spoken: list[Utterance] = []
        self.cancel_calls = 0
        self._listener: SynthesisListener | None = None

    def is_available(self) -> bool:
        return self.available

    def voices(self) -> list[Voice]:
        return list(self._voices)

    @property
    def speaking(self) -> bool:
        return self._listener is not None

    @property
    def texts(self) -> list[str]:
        return [utterance.text for utterance in self.spoken]

    def speak(self, utterance: Utterance, listener: SynthesisListener) -> None:
        self.spoken.append(utterance)
        self._listener = listener
        loop = asyncio.get_running_loop()
        loop.call_soon(listener, SynthesisEvent(kind="start"))
        if self.fail_with:
            loop.call_soon(self._finish, listener, SynthesisEvent(kind="error", error=self.fail_with))
        elif not self.hold:
            loop.call_soon(self._finish, listener, SynthesisEvent(kind="end"))

    def finish(self) -> None:
        if self._listener is not None:
            self._finish(self._listener, SynthesisEvent(kind="end"))

    def _finish(self, listener: SynthesisListener, event: SynthesisEvent) -> None:
        if self._listener is listener:
            self._listener = None
        listener(event)

    def cancel(self) -> None:
        self.cancel_calls += 1
        listener, self._listener = self._listener, None
        if listener is not None:
            asyncio.get_running_loop().call_soon(listener, SynthesisEvent(kind="error", error="canceled"))


class FakeBackend:
    def __init__(
        self,
        authenticated: bool = True,
        report: BackendReply | None = None,
        answer: BackendReply | None = None,
    ) -> None:
        self.authenticated = authenticated
        self.report = report or BackendReply(
            200,
            {"success": True, "data": {"employee_found": True, "employee_name": "احمد", "analysis": "عملکرد خوب بود."}},
        )
        self.answer = answer or BackendReply(200, {"answer": "سلام! خوبم."})
        self.report_calls: list[tuple[str, str]] = []
        self.questions: list[str] = []

    async def require_session(self) -> None:
        if not self.authenticated:
            raise BackendError("unauthenticated", status_code=401)

    async def lookup_report(self, text: str, employee_name: str) -> BackendReply:
        self.report_calls.append((text, employee_name))
        return self.report

    async def ask_general(self, text: str) -> BackendReply:
        self.questions.append(text)
        return self.answer


class ScriptedManualInput:
    def __init__(self, *answers: str | None) -> None:
        self.answers = list(answers)
        self.prompts: list[str] = []
        self.cancel_calls = 0

    async def request(self, prompt: str) -> str | None:
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else None

    def cancel(self) -> None:
        self.cancel_calls += 1


PERSIAN_FEMALE = Voice(name="Dilara", lang="fa-IR", voice_id="fa_dilara", gender="female")
PERSIAN_MALE = Voice(name="Farid", lang="fa-IR", voice_id="fa_farid", gender="male")
ARABIC_FEMALE = Voice(name="Zariyah", lang="ar-SA", voice_id="ar_zariyah", gender="female")
ENGLISH_FEMALE = Voice(name="Sky", lang="en-US", voice_id="af_sky", gender="female")
ENGLISH_MALE = Voice(name="Michael", lang="en-US", voice_id="am_michael", gender="male")
