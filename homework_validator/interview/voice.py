"""
Spoken-modality pipeline: synthesize -> play -> capture -> transcribe.

Playback happens on the client. The channel hands out one clip id per spoken
question, the client fetches the audio and reports when it finished playing,
which opens capture for that topic. Everything is keyed by (session uid, topic
index) so leaving a topic drops its clip and capture.
"""
from __future__ import annotations

import asyncio
import json
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from homework_validator import config
from homework_validator.interview.calls import bounded
from homework_validator.interview.errors import GenerationError
from homework_validator.interview.models import Session, Turn
from homework_validator.providers.base import SpeechClient, SpeechClip, TranscribeClient

logger = config.get_logger("homework_validator.interview")

NO_RESPONSE = "(no response)"

Key = Tuple[str, int]


def stt_context_hint(document_text: str, turns: List[Turn]) -> str:
    """Short vocabulary hint for STT: the start of the document plus the last exchange."""
    excerpt = (document_text or "")[: config.STT_CONTEXT_CHAR_LIMIT]
    recent = " ".join(t.text for t in turns[-2:])
    return f"{excerpt} {recent}".strip()


@dataclass
class _Playback:
    clip_id: str
    key: Key
    text: str
    task: "asyncio.Task[Optional[SpeechClip]]"
    ended: bool = False


class VoiceChannel:
    def __init__(
        self,
        speech_client: SpeechClient,
        transcribe_client: TranscribeClient,
        synthesis_timeout: float = config.SYNTHESIS_TIMEOUT_SECONDS,
        transcribe_timeout: float = config.TRANSCRIBE_TIMEOUT_SECONDS,
        min_audio_bytes: int = config.MIN_AUDIO_BYTES,
    ):
        self._speech = speech_client
        self._stt = transcribe_client
        self._synthesis_timeout = synthesis_timeout
        self._transcribe_timeout = transcribe_timeout
        self._min_audio_bytes = min_audio_bytes
        self._playback: Optional[_Playback] = None
        self._capture: Optional[Key] = None
        self._transcribing: Optional[Key] = None

    def speak(self, session: Session, index: int, text: str) -> str:
        """Start synthesizing `text` for a topic and return the clip id."""
        self.cancel()
        clip_id = uuid.uuid4().hex
        task = asyncio.ensure_future(self._synthesize(clip_id, text))
        self._playback = _Playback(clip_id=clip_id, key=(session.uid, index), text=text, task=task)
        return clip_id

    async def _synthesize(self, clip_id: str, text: str) -> Optional[SpeechClip]:
        try:
            return await bounded("synthesize", self._speech.synthesize(text), self._synthesis_timeout)
        except GenerationError as e:
            # Without audio the question stays readable on screen; open capture right away
            logger.warning(json.dumps({
                "event": "speech_synthesis_failed",
                "clipId": clip_id,
                "error": type(e).__name__,
                "message": e.message[:256],
            }))
            pb = self._playback
            if pb is not None and pb.clip_id == clip_id:
                pb.ended = True
                self._capture = pb.key
            return None

    def is_speaking(self, session: Session) -> bool:
        pb = self._playback
        return pb is not None and not pb.ended and pb.key == (session.uid, session.current_topic_index)

    def is_capturing(self, session: Session) -> bool:
        return self._capture == (session.uid, session.current_topic_index)

    def is_transcribing(self, session: Session) -> bool:
        return self._transcribing == (session.uid, session.current_topic_index)

    @property
    def current_clip_id(self) -> Optional[str]:
        pb = self._playback
        return pb.clip_id if pb is not None and not pb.ended else None

    async def get_clip(self, clip_id: str) -> Optional[SpeechClip]:
        pb = self._playback
        if pb is None or pb.clip_id != clip_id:
            return None
        await asyncio.wait([pb.task])
        return None if pb.task.cancelled() else pb.task.result()

    def playback_finished(self, clip_id: str) -> Optional[Key]:
        """Mark a clip as played. Returns the key capture was opened for, or None if stale."""
        pb = self._playback
        if pb is None or pb.clip_id != clip_id:
            return None
        pb.ended = True
        self._capture = pb.key
        return pb.key

    def cancel(self) -> None:
        """Drop pending synthesis, playback and capture."""
        pb, self._playback = self._playback, None
        if pb is not None and not pb.task.done():
            pb.task.cancel()
        self._capture = None
        self._transcribing = None

    async def transcribe(self, session: Session, index: int, audio: bytes, mime_type: str = "audio/webm") -> str:
        """Transcribe one captured answer. Silence comes back as the no-response placeholder."""
        key = (session.uid, index)
        if self._capture != key:
            return ""
        if len(audio or b"") < self._min_audio_bytes:
            return NO_RESPONSE
        hint = stt_context_hint(session.document_text, session.topics[index].turns)
        self._transcribing = key
        try:
            text = await bounded(
                "transcribe",
                self._stt.transcribe(audio, context_hint=hint, mime_type=mime_type),
                self._transcribe_timeout,
            )
        finally:
            if self._transcribing == key:
                self._transcribing = None
        text = (text or "").strip()
        return text or NO_RESPONSE

    def close_capture(self, session: Session, index: int) -> None:
        if self._capture == (session.uid, index):
            self._capture = None

    async def drain(self) -> None:
        """Wait for pending synthesis to settle."""
        pb = self._playback
        if pb is not None and not pb.task.done():
            await asyncio.wait([pb.task])

    def snapshot(self, session: Session) -> Dict[str, Any]:
        return {
            "speaking": self.is_speaking(session),
            "capturing": self.is_capturing(session),
            "transcribing": self.is_transcribing(session),
            "clipId": self.current_clip_id if self.is_speaking(session) else None,
        }
