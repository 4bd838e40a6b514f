"""Text-to-speech: ElevenLabs first, OpenAI TTS as the fallback."""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Optional

import openai
from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs
from elevenlabs.core.api_error import ApiError
from openai import OpenAI

logger = logging.getLogger(__name__)

MAX_SPEECH_CHARS = 2000
DEFAULT_VOICE = "Aria"
ELEVENLABS_MODEL = "eleven_multilingual_v2"

VOICE_IDS = {
    "Aria": "9BWtsMINqrJLrRacOk9x",
    "Roger": "CwhRBWXzGAHq8TQ4Fs17",
    "Sarah": "EXAVITQu4vr4xnSDxMaL",
    "Laura": "FGY2WhTYpPnrIDTdsKH5",
    "Charlie": "IKne3meq5aSn9XLyUdCD",
    "George": "JBFqnCBsd6RMkjVDRZzb",
    "Callum": "N2lVS1w4EtoT3dr4eOWO",
    "River": "SAz9YHcvj6GT2YYXdXww",
    "Liam": "TX3LPaxmHKxFdv7VOQHJ",
    "Charlotte": "XB0fDUnXU5powFXDhCwa",
    "Alice": "Xb7hH8MSUJpSbSDYk0k2",
}


class SpeechError(Exception):
    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.message = message
        self.status = status


@dataclass
class SpeechResult:
    audio_base64: str
    voice: str
    provider: str


def resolve_voice(voice: Optional[str]) -> str:
    """Known voice name, case-insensitive; anything else falls back to Aria."""
    wanted = (voice or "").strip().lower()
    for name in VOICE_IDS:
        if name.lower() == wanted:
            return name
    return DEFAULT_VOICE


class SpeechSynthesizer:
    def __init__(self, elevenlabs_key: str = "", openai_key: str = "",
                 openai_model: str = "tts-1", timeout: int = 60):
        self.elevenlabs_key = (elevenlabs_key or "").strip()
        self.openai_key = (openai_key or "").strip()
        self.openai_model = openai_model or "tts-1"
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "SpeechSynthesizer":
        return cls(
            elevenlabs_key=config.get("ELEVENLABS_API_KEY") or "",
            openai_key=config.get("OPENAI_API_KEY") or "",
            openai_model=config.get("OPENAI_TTS_MODEL") or "tts-1",
        )

    @property
    def configured(self) -> bool:
        return bool(self.elevenlabs_key or self.openai_key)

    def _elevenlabs(self, text: str, voice: str) -> bytes:
        client = ElevenLabs(api_key=self.elevenlabs_key, timeout=self.timeout)
        try:
            audio = client.text_to_speech.convert(
                voice_id=VOICE_IDS[voice],
                model_id=ELEVENLABS_MODEL,
                text=text,
                output_format="mp3_44100_128",
                voice_settings=VoiceSettings(stability=0.5, similarity_boost=0.5),
            )
            return b"".join(audio)
        except ApiError as e:
            raise SpeechError(f"ElevenLabs API error: {e.status_code} {str(e.body)[:200]}", e.status_code or 500) from e
        except Exception as e:
            raise SpeechError(f"ElevenLabs unreachable: {e}", 500) from e

    def _openai(self, text: str) -> bytes:
        client = OpenAI(api_key=self.openai_key, timeout=self.timeout)
        try:
            response = client.audio.speech.create(model=self.openai_model, voice="alloy", input=text)
        except openai.RateLimitError as e:
            raise SpeechError("Rate limits exceeded, please try again later.", 429) from e
        except openai.OpenAIError as e:
            raise SpeechError(f"OpenAI TTS error: {e}", 500) from e
        return response.content

    def synthesize(self, text: str, voice: str = DEFAULT_VOICE) -> SpeechResult:
        text = (text or "").strip()[:MAX_SPEECH_CHARS]
        if not text:
            raise SpeechError("Text is required", 400)
        if not self.configured:
            raise SpeechError("Text-to-speech is not configured", 500)

        voice = resolve_voice(voice)
        if self.elevenlabs_key:
            try:
                audio = self._elevenlabs(text, voice)
                return SpeechResult(base64.b64encode(audio).decode("ascii"), voice, "elevenlabs")
            except SpeechError as e:
                if not self.openai_key:
                    raise
                logger.warning("ElevenLabs failed, falling back to OpenAI TTS: %s", e)

        audio = self._openai(text)
        return SpeechResult(base64.b64encode(audio).decode("ascii"), voice, "openai")
