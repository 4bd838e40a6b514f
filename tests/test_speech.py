"""
Text-to-speech tests (providers patched out)
"""
import base64

import pytest
from elevenlabs.core.api_error import ApiError

from studyflow.services import speech
from studyflow.services.speech import MAX_SPEECH_CHARS, SpeechError, SpeechSynthesizer, resolve_voice


class FakeAudioResponse:
    content = b"openai-audio"


class FakeOpenAI:
    """Minimal OpenAI client exposing audio.speech.create."""

    instances = []

    def __init__(self, api_key=None, timeout=None):
        self.requests = []
        self.audio = self
        self.speech = self
        FakeOpenAI.instances.append(self)

    def create(self, model, voice, input):
        self.requests.append({"model": model, "voice": voice, "input": input})
        return FakeAudioResponse()


class FakeElevenLabs:
    """ElevenLabs client double; ``error`` makes convert() raise."""

    calls = []
    error = None

    def __init__(self, api_key=None, timeout=None):
        self.api_key = api_key
        self.text_to_speech = self

    def convert(self, **kwargs):
        FakeElevenLabs.calls.append(dict(kwargs, api_key=self.api_key))
        if FakeElevenLabs.error is not None:
            raise FakeElevenLabs.error
        return iter([b"mp3-", b"bytes"])


@pytest.fixture
def providers(monkeypatch):
    FakeElevenLabs.calls = []
    FakeElevenLabs.error = None
    FakeOpenAI.instances = []
    monkeypatch.setattr(speech, "ElevenLabs", FakeElevenLabs)
    monkeypatch.setattr(speech, "OpenAI", FakeOpenAI)
    return FakeElevenLabs


class TestVoices:
    def test_known_voice_case_insensitive(self):
        assert resolve_voice("roger") == "Roger"

    def test_unknown_voice_defaults(self):
        assert resolve_voice("HAL 9000") == "Aria"
        assert resolve_voice(None) == "Aria"


class TestSynthesize:
    """Provider selection and fallback"""

    def test_elevenlabs_preferred(self, providers):
        result = SpeechSynthesizer(elevenlabs_key="el-key", openai_key="oa-key").synthesize("Hello class", "Sarah")

        assert result.provider == "elevenlabs"
        assert result.voice == "Sarah"
        assert base64.b64decode(result.audio_base64) == b"mp3-bytes"
        call = providers.calls[0]
        assert call["voice_id"] == speech.VOICE_IDS["Sarah"]
        assert call["api_key"] == "el-key"
        assert call["model_id"] == "eleven_multilingual_v2"
        assert FakeOpenAI.instances == []

    def test_falls_back_to_openai(self, providers):
        providers.error = ApiError(status_code=401, body="bad key")
        result = SpeechSynthesizer(elevenlabs_key="el-key", openai_key="oa-key").synthesize("Hello class")

        assert result.provider == "openai"
        assert base64.b64decode(result.audio_base64) == b"openai-audio"
        assert FakeOpenAI.instances[0].requests[0]["voice"] == "alloy"

    def test_elevenlabs_error_without_fallback(self, providers):
        providers.error = ApiError(status_code=429, body="slow down")
        with pytest.raises(SpeechError) as exc:
            SpeechSynthesizer(elevenlabs_key="el-key").synthesize("Hello class")
        assert exc.value.status == 429

    def test_network_error_without_fallback(self, providers):
        providers.error = ConnectionError("no route")
        with pytest.raises(SpeechError) as exc:
            SpeechSynthesizer(elevenlabs_key="el-key").synthesize("Hello")
        assert exc.value.status == 500

    def test_openai_only(self, providers):
        result = SpeechSynthesizer(openai_key="oa-key").synthesize("Hello class")
        assert result.provider == "openai"
        assert providers.calls == []

    def test_text_is_truncated(self, providers):
        SpeechSynthesizer(elevenlabs_key="el-key").synthesize("x" * (MAX_SPEECH_CHARS + 100))
        assert len(providers.calls[0]["text"]) == MAX_SPEECH_CHARS

    def test_empty_text(self):
        with pytest.raises(SpeechError) as exc:
            SpeechSynthesizer(openai_key="oa-key").synthesize("   ")
        assert exc.value.status == 400

    def test_not_configured(self):
        with pytest.raises(SpeechError) as exc:
            SpeechSynthesizer().synthesize("Hello")
        assert exc.value.status == 500
