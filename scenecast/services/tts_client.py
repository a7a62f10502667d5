"""TTS (Text-to-Speech) client producing narration audio with character timings."""

import base64
import binascii
import io
import wave
from typing import Any, Optional

import requests

from scenecast.core.config import Settings
from scenecast.core.errors import SynthesisError, SynthesisFailureReason, TimingMapError
from scenecast.models.schemas import CharacterTimingMap, NarrationAudio, QuotaStatus, Scene
from scenecast.utils.rate_limiter import RateLimiter

# Roughly 150 words per minute
STUB_SECONDS_PER_CHARACTER = 0.06
STUB_SAMPLE_RATE = 22050


class TTSClient:
    """Speech synthesizer adapter supporting ElevenLabs and a silent stub."""

    def __init__(
        self,
        settings: Settings,
        logger: Any,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """
        Initialize TTS client.

        Args:
            settings: Application settings
            logger: Logger instance
            session: HTTP session, shared for the lifetime of the process
            rate_limiter: Limiter guarding provider calls
        """
        self.settings = settings
        self.logger = logger
        self.session = session or requests.Session()
        self.rate_limiter = rate_limiter
        self.provider = self._detect_provider()

    def _detect_provider(self) -> str:
        """Detect which TTS provider to use based on available credentials."""
        if self.settings.elevenlabs_api_key:
            return "elevenlabs"
        return "stub"

    def build_narration_text(self, scenes: list[Scene]) -> str:
        """Join scene narrations in scene order with the configured separator, skipping silent scenes."""
        parts = (scene.narration_text for scene in scenes if scene.narration_text)
        return self.settings.narration_separator.join(parts)

    def synthesize_scenes(self, scenes: list[Scene], voice_id: Optional[str] = None) -> NarrationAudio:
        """Synthesize one narration track covering every scene."""
        return self.synthesize(self.build_narration_text(scenes), voice_id=voice_id)

    def synthesize(self, text: str, voice_id: Optional[str] = None) -> NarrationAudio:
        """
        Convert text to speech.

        Args:
            text: Full narration text
            voice_id: Optional provider voice ID (defaults to the configured voice)

        Returns:
            NarrationAudio; its timing_map is None when the provider gave no
            usable alignment

        Raises:
            SynthesisError: On authentication, quota, input or transport failures
        """
        if not text or not text.strip():
            raise SynthesisError("Narration text is empty", SynthesisFailureReason.MALFORMED_INPUT)

        self.logger.info(f"Generating speech using {self.provider} provider for {len(text)} characters...")

        if self.provider == "elevenlabs":
            narration = self._synthesize_elevenlabs(text, voice_id)
        else:
            narration = self._synthesize_stub(text)

        self.logger.info(
            f"Speech generated: {len(narration.audio_bytes)} bytes, "
            f"alignment={'yes' if narration.has_alignment else 'no'}"
        )
        return narration

    def _headers(self, accept: str = "application/json") -> dict[str, str]:
        return {
            "Accept": accept,
            "Content-Type": "application/json",
            "xi-api-key": self.settings.elevenlabs_api_key or "",
        }

    def _wait_for_rate_limit(self, endpoint: str) -> None:
        if self.rate_limiter and self.settings.enable_rate_limiting:
            if not self.rate_limiter.can_proceed(endpoint):
                self.logger.info(f"Rate limit reached for {endpoint}, waiting for a free slot")
            waited = self.rate_limiter.wait_if_needed(endpoint)
            if waited:
                self.logger.debug(f"Rate limited {endpoint} for {waited:.2f}s")

    def _synthesize_elevenlabs(self, text: str, voice_id: Optional[str]) -> NarrationAudio:
        """Generate speech with character alignment using the ElevenLabs timestamps endpoint."""
        voice_id = voice_id or self.settings.elevenlabs_voice_id
        url = f"{self.settings.elevenlabs_api_url}/text-to-speech/{voice_id}/with-timestamps"

        data = {
            "text": text,
            "model_id": self.settings.elevenlabs_model_id,
            "voice_settings": {
                "stability": self.settings.tts_stability,
                "similarity_boost": self.settings.tts_similarity_boost,
            },
        }

        self._wait_for_rate_limit("text_to_speech")
        try:
            response = self.session.post(
                url,
                json=data,
                headers=self._headers(),
                timeout=self.settings.elevenlabs_timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            raise SynthesisError(f"Network error calling ElevenLabs API: {e}", SynthesisFailureReason.NETWORK) from e

        if response.status_code != 200:
            raise self._provider_error(response)

        try:
            payload = response.json()
        except ValueError as e:
            raise SynthesisError("ElevenLabs returned a non-JSON response", status_code=response.status_code) from e

        audio_b64 = payload.get("audio_base64") if isinstance(payload, dict) else None
        if not audio_b64:
            raise SynthesisError("ElevenLabs response did not include audio", status_code=response.status_code)
        try:
            audio_bytes = base64.b64decode(audio_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SynthesisError(f"ElevenLabs returned undecodable audio: {e}") from e

        return NarrationAudio(
            text=text,
            audio_bytes=audio_bytes,
            audio_format="mp3",
            timing_map=self._parse_timing_map(text, payload.get("alignment")),
        )

    def _provider_error(self, response: requests.Response) -> SynthesisError:
        """Map a non-200 provider response onto a SynthesisError."""
        status_code = response.status_code
        detail_status = ""
        detail_message = (response.text or "")[:300]

        try:
            payload = response.json()
        except ValueError:
            payload = None
        detail = payload.get("detail") if isinstance(payload, dict) else None
        if isinstance(detail, dict):
            detail_status = str(detail.get("status", ""))
            detail_message = str(detail.get("message") or detail_message)
        elif isinstance(detail, str):
            detail_message = detail

        if detail_status == "quota_exceeded" or status_code in (402, 429):
            return SynthesisError(
                f"ElevenLabs quota exceeded or rate limited (HTTP {status_code}): {detail_message}",
                SynthesisFailureReason.QUOTA_EXCEEDED,
                status_code,
            )
        if status_code in (401, 403):
            return SynthesisError(
                f"ElevenLabs authentication failed (HTTP {status_code}): check the API key. {detail_message}",
                SynthesisFailureReason.UNAUTHORIZED,
                status_code,
            )
        if status_code in (400, 422):
            return SynthesisError(
                f"ElevenLabs rejected the narration text (HTTP {status_code}): {detail_message}",
                SynthesisFailureReason.MALFORMED_INPUT,
                status_code,
            )
        return SynthesisError(
            f"ElevenLabs API returned status {status_code}: {detail_message}",
            SynthesisFailureReason.PROVIDER_ERROR,
            status_code,
        )

    def _parse_timing_map(self, text: str, alignment: Any) -> Optional[CharacterTimingMap]:
        """
        Validate provider alignment against the text that was sent.

        Returns None (captions omitted) rather than failing the job.
        """
        if not alignment:
            self.logger.warning("Provider returned no alignment data; captions will be omitted")
            return None

        try:
            timing_map = CharacterTimingMap.from_alignment(alignment)
        except TimingMapError as e:
            self.logger.warning(f"Ignoring provider alignment: {e}")
            return None

        if timing_map.length != len(text):
            self.logger.warning(
                f"Alignment covers {timing_map.length} characters but the text has {len(text)}; "
                "captions will be omitted"
            )
            return None

        return timing_map

    def _synthesize_stub(self, text: str) -> NarrationAudio:
        """
        Generate silent audio with evenly spaced character timings.

        Used when no provider is configured so the pipeline can run locally.
        """
        self.logger.warning("Using stub TTS - generating silent audio placeholder")

        starts = [i * STUB_SECONDS_PER_CHARACTER for i in range(len(text))]
        ends = [start + STUB_SECONDS_PER_CHARACTER for start in starts]
        duration_seconds = max(1.0, len(text) * STUB_SECONDS_PER_CHARACTER)

        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wav_file:
            wav_file.setnchannels(1)
            wav_file.setsampwidth(2)
            wav_file.setframerate(STUB_SAMPLE_RATE)
            wav_file.writeframes(b"\x00\x00" * int(duration_seconds * STUB_SAMPLE_RATE))

        return NarrationAudio(
            text=text,
            audio_bytes=buffer.getvalue(),
            audio_format="wav",
            timing_map=CharacterTimingMap(characters=list(text), start_times=starts, end_times=ends),
        )

    def check_quota(self) -> QuotaStatus:
        """
        Read the remaining character quota from the provider.

        Raises:
            SynthesisError: If no provider is configured or the request fails
        """
        if self.provider != "elevenlabs":
            raise SynthesisError("ElevenLabs API key not configured", SynthesisFailureReason.UNAUTHORIZED)

        try:
            response = self.session.get(
                f"{self.settings.elevenlabs_api_url}/user",
                headers=self._headers(),
                timeout=self.settings.elevenlabs_timeout_seconds,
            )
        except requests.exceptions.RequestException as e:
            raise SynthesisError(f"Network error calling ElevenLabs API: {e}", SynthesisFailureReason.NETWORK) from e

        if response.status_code != 200:
            raise self._provider_error(response)

        subscription = response.json().get("subscription", {})
        quota = QuotaStatus(
            character_count=subscription.get("character_count", 0),
            character_limit=subscription.get("character_limit", 0),
            can_synthesize_freely_character_limit=subscription.get("can_synthesize_freely_character_limit") or 0,
        )
        self.logger.info(f"ElevenLabs quota: {quota.remaining}/{quota.character_limit}")
        return quota
