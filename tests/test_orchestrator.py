from __future__ import annotations

import asyncio

import pytest

from conftest import (
    PERSIAN_FEMALE,
    FakeBackend,
    FakeRecognitionEngine,
    FakeSynthesisEngine,
    ScriptedManualInput,
    failure,
    final,
    interim,
)
from crm_voice.errors import CaptureError, SessionBusyError, SessionCancelledError, SynthesisError
from crm_voice.intent.processor import CommandProcessor
from crm_voice.orchestrator.policies import CapturePolicies, SessionPolicies, SynthesisPolicies
from crm_voice.orchestrator.state_machine import SessionOrchestrator
from crm_voice.transcription.capture import SpeechCapture
from crm_voice.transcription.manual import ManualInputSource, PendingManualInput
from crm_voice.tts.synthesizer import ResponseSynthesizer

ERROR_PREFIX = SessionPolicies().error_prefix


class RecordingBridge:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def publish_state(self, state, payload=None) -> None:
        self.events.append((state, payload or {}))

    @property
    def states(self) -> list[str]:
        return [state for state, payload in self.events if "interim" not in payload]


class Harness:
    def __init__(
        self,
        scripts=None,
        *,
        synthesis: FakeSynthesisEngine | None = None,
        backend: FakeBackend | None = None,
        manual: ManualInputSource | None = None,
        microphone: bool = True,
        available: bool = True,
        retry_delay: float = 0,
    ) -> None:
        self.recognition = FakeRecognitionEngine(scripts, available=available, microphone=microphone)
        self.synthesis = synthesis or FakeSynthesisEngine(voices=[PERSIAN_FEMALE])
        self.backend = backend or FakeBackend()
        self.bridge = RecordingBridge()
        self.capture = SpeechCapture(
            self.recognition, CapturePolicies(retry_delay_seconds=retry_delay), manual_input=manual
        )
        self.synthesizer = ResponseSynthesizer(self.synthesis, policies=SynthesisPolicies(chunk_pause_seconds=0))
        self.orchestrator = SessionOrchestrator(
            capture=self.capture,
            synthesizer=self.synthesizer,
            processor=CommandProcessor(self.backend),
            ui_bridge=self.bridge,
        )

    @property
    def spoken(self) -> str:
        return " ".join(self.synthesis.texts)


async def settle(predicate, turns: int = 50) -> None:
    for _ in range(turns):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.anyio
async def test_report_round_trip() -> None:
    harness = Harness([[final("گزارش کار احمد")]])

    result = await harness.orchestrator.handle_voice_interaction()

    assert result.success
    assert result.transcript == "گزارش کار احمد"
    assert result.response.type == "success"
    assert harness.backend.report_calls == [("گزارش کار احمد", "احمد")]
    assert "گزارش همکار احمد" in harness.spoken
    assert harness.bridge.states == ["LISTENING", "CLASSIFYING", "PROCESSING", "SPEAKING", "IDLE"]
    assert harness.orchestrator.state == "IDLE"
    assert harness.orchestrator.session is None


@pytest.mark.anyio
async def test_interim_transcripts_are_published() -> None:
    harness = Harness([[interim("گزارش"), final("گزارش کار احمد")]])

    await harness.orchestrator.handle_voice_interaction()

    interims = [payload["interim"] for state, payload in harness.bridge.events if "interim" in payload]
    assert interims == ["گزارش"]


@pytest.mark.anyio
async def test_second_request_is_rejected_without_side_effects() -> None:
    harness = Harness([[]])
    orchestrator = harness.orchestrator
    first = asyncio.create_task(orchestrator.handle_voice_interaction())
    await settle(lambda: orchestrator.state == "LISTENING" and harness.recognition.requests)
    events_before = list(harness.bridge.events)
    session_before = orchestrator.session

    with pytest.raises(SessionBusyError):
        await orchestrator.handle_voice_interaction()
    with pytest.raises(SessionBusyError):
        await orchestrator.handle_text_interaction("سلام")

    assert orchestrator.session is session_before
    assert orchestrator.state == "LISTENING"
    assert len(harness.recognition.requests) == 1
    assert harness.bridge.events == events_before

    await orchestrator.stop_audio_processing()
    result = await first
    assert not result.success


@pytest.mark.anyio
async def test_stop_while_listening_resets_to_idle() -> None:
    harness = Harness([[]])
    orchestrator = harness.orchestrator
    task = asyncio.create_task(orchestrator.handle_voice_interaction())
    await settle(lambda: bool(harness.recognition.requests))

    await orchestrator.stop_audio_processing()

    assert orchestrator.state == "IDLE"
    assert orchestrator.session is None
    assert harness.recognition.stop_calls == 1
    result = await task
    assert not result.success
    assert result.response.text == SessionCancelledError().message
    assert harness.synthesis.spoken == []
    assert harness.bridge.events[-1] == ("IDLE", {"session_id": harness.bridge.events[0][1]["session_id"], "stopped": True})


@pytest.mark.anyio
async def test_stop_while_speaking_stops_further_chunks() -> None:
    long_answer = " ".join(f"پاسخ بخش {'الف' * (i % 5 + 1)} برای بررسی توقف گفتار است." for i in range(8))
    synthesis = FakeSynthesisEngine(voices=[PERSIAN_FEMALE], hold=True)
    harness = Harness([[final("امروز چه خبر؟")]], synthesis=synthesis, backend=FakeBackend(answer=None))
    harness.backend.answer.body["answer"] = long_answer
    orchestrator = harness.orchestrator
    task = asyncio.create_task(orchestrator.handle_voice_interaction())
    await settle(lambda: len(synthesis.spoken) == 1)
    assert orchestrator.state == "SPEAKING"

    await orchestrator.stop_audio_processing()
    assert not harness.synthesizer.is_speaking()
    result = await task

    assert not result.success
    assert len(synthesis.spoken) == 1
    assert synthesis.cancel_calls >= 1
    assert orchestrator.state == "IDLE"


@pytest.mark.anyio
async def test_stop_is_idempotent() -> None:
    harness = Harness()
    await harness.orchestrator.stop_audio_processing()
    await harness.orchestrator.stop_audio_processing()
    assert harness.orchestrator.state == "IDLE"
    assert harness.bridge.events == []


@pytest.mark.anyio
async def test_stop_during_manual_input_frees_it_for_the_next_session() -> None:
    manual = PendingManualInput()
    harness = Harness(available=False, manual=manual)
    orchestrator = harness.orchestrator
    stale = asyncio.create_task(orchestrator.handle_voice_interaction())
    await settle(lambda: manual.waiting)

    await orchestrator.stop_audio_processing()

    assert not manual.waiting
    assert orchestrator.state == "IDLE"

    fresh = asyncio.create_task(orchestrator.handle_voice_interaction())
    await settle(lambda: manual.waiting)
    assert manual.submit("گزارش کار احمد")
    result = await fresh

    assert result.success
    assert result.transcript == "گزارش کار احمد"
    assert harness.backend.report_calls == [("گزارش کار احمد", "احمد")]
    stale_result = await stale
    assert not stale_result.success
    assert stale_result.response.text == SessionCancelledError().message


@pytest.mark.anyio
async def test_stop_during_retry_pause_releases_capture() -> None:
    harness = Harness([[failure("network")], [final("گزارش کار احمد")]], retry_delay=5)
    orchestrator = harness.orchestrator
    stale = asyncio.create_task(orchestrator.handle_voice_interaction())
    await settle(lambda: harness.capture.retry_count == 1)

    await orchestrator.stop_audio_processing()

    assert not harness.capture.is_listening()
    result = await asyncio.wait_for(orchestrator.handle_voice_interaction(), timeout=1)

    assert result.success
    assert harness.backend.report_calls == [("گزارش کار احمد", "احمد")]
    stale_result = await asyncio.wait_for(stale, timeout=1)
    assert stale_result.response.text == SessionCancelledError().message


@pytest.mark.anyio
async def test_capture_failure_is_spoken_and_returned() -> None:
    harness = Harness([[failure("no-speech")]])

    result = await harness.orchestrator.handle_voice_interaction()

    message = CaptureError("no-speech").message
    assert not result.success
    assert result.transcript == ""
    assert result.response.type == "error"
    assert result.response.text == f"{ERROR_PREFIX}{message}"
    assert "صدایی تشخیص داده نشد" in harness.spoken
    assert harness.bridge.states == ["LISTENING", "FAILED", "IDLE"]
    assert harness.orchestrator.state == "IDLE"


@pytest.mark.anyio
async def test_synthesis_failure_is_not_spoken_again() -> None:
    synthesis = FakeSynthesisEngine(voices=[PERSIAN_FEMALE], fail_with="synthesis-failed")
    harness = Harness([[final("امروز چه خبر؟")]], synthesis=synthesis)

    result = await harness.orchestrator.handle_voice_interaction()

    assert not result.success
    assert result.response.text == f"{ERROR_PREFIX}{SynthesisError('synthesis-failed').message}"
    assert len(synthesis.spoken) == 1
    assert harness.bridge.states[-2:] == ["FAILED", "IDLE"]


@pytest.mark.anyio
async def test_permission_denied_falls_back_to_manual_input() -> None:
    manual = ScriptedManualInput("گزارش کار احمد")
    harness = Harness([[failure("not-allowed")]], manual=manual)

    result = await harness.orchestrator.handle_voice_interaction()

    assert result.success
    assert result.transcript == "گزارش کار احمد"
    assert len(manual.prompts) == 1
    assert len(harness.recognition.requests) == 1


@pytest.mark.anyio
async def test_failed_microphone_probe_without_manual_input() -> None:
    harness = Harness([[final("نباید شنیده شود")]], microphone=False)

    result = await harness.orchestrator.handle_voice_interaction()

    assert not result.success
    assert result.response.text == f"{ERROR_PREFIX}{CaptureError('audio-capture').message}"
    assert harness.recognition.requests == []


@pytest.mark.anyio
async def test_unsupported_capture_uses_manual_input() -> None:
    manual = ScriptedManualInput("امروز چه خبر؟")
    harness = Harness(available=False, manual=manual)

    result = await harness.orchestrator.handle_voice_interaction()

    assert result.success
    assert harness.backend.questions == ["امروز چه خبر؟"]


@pytest.mark.anyio
async def test_text_interaction_skips_capture() -> None:
    harness = Harness()

    result = await harness.orchestrator.handle_text_interaction("  امروز چه خبر?  ")

    assert result.success
    assert result.transcript == "امروز چه خبر؟"
    assert harness.backend.questions == ["امروز چه خبر؟"]
    assert harness.recognition.requests == []
    assert harness.bridge.states == ["CLASSIFYING", "PROCESSING", "SPEAKING", "IDLE"]


@pytest.mark.anyio
async def test_blank_text_interaction_fails() -> None:
    harness = Harness()

    result = await harness.orchestrator.handle_text_interaction("   ")

    assert not result.success
    assert result.response.text == f"{ERROR_PREFIX}{CaptureError('manual-input-empty').message}"
    assert harness.orchestrator.session is None


@pytest.mark.anyio
async def test_unexpected_processor_error_is_contained() -> None:
    class BrokenProcessor:
        async def process(self, command):
            raise KeyError("boom")

    harness = Harness([[final("سلام")]])
    harness.orchestrator._processor = BrokenProcessor()

    result = await harness.orchestrator.handle_voice_interaction()

    assert not result.success
    assert result.response.type == "error"
    assert harness.orchestrator.state == "IDLE"
    assert harness.orchestrator.session is None


@pytest.mark.anyio
async def test_system_status_and_self_test() -> None:
    harness = Harness(microphone=False)

    status = harness.orchestrator.get_system_status()
    assert status["is_processing"] is False
    assert status["state"] == "IDLE"
    assert status["speech_recognition_supported"] is True
    assert status["tts_supported"] is True
    assert status["current_session"] is None
    assert status["voice_info"]["best_voice"] == "Dilara (fa-IR)"

    results = await harness.orchestrator.test_system()
    assert results == {
        "speech_recognition": True,
        "text_to_speech": True,
        "microphone": False,
        "overall": False,
    }


@pytest.mark.anyio
async def test_voice_check_speaks_and_reports_failure() -> None:
    harness = Harness()
    assert await harness.orchestrator.test_voice() is True
    assert "تست صدای فارسی" in harness.spoken

    failing = Harness(synthesis=FakeSynthesisEngine(voices=[PERSIAN_FEMALE], fail_with="network"))
    assert await failing.orchestrator.test_voice() is False
    assert failing.orchestrator.state == "IDLE"


@pytest.mark.anyio
async def test_voice_check_is_rejected_during_a_session() -> None:
    harness = Harness([[]])
    task = asyncio.create_task(harness.orchestrator.handle_voice_interaction())
    await settle(lambda: bool(harness.recognition.requests))

    with pytest.raises(SessionBusyError):
        await harness.orchestrator.test_voice()
    assert harness.synthesis.spoken == []

    await harness.orchestrator.stop_audio_processing()
    await task
