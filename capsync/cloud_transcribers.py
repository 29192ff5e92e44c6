"""Cloud transcription backends (AssemblyAI and the Hugging Face Inference API)."""

import asyncio
import base64
import logging
import os
from typing import Any, Dict, Optional, Union

import httpx

from .exceptions import (
    AuthenticationError,
    InvalidInputError,
    ProviderUnavailableError,
)
from .models import AudioFormat, AudioTrack, TranscriptChunk, TranscriptionResult
from .transcriber import Transcriber, chunks_from_timestamp_pairs
from .utils import truncate_tail

logger = logging.getLogger(__name__)

AudioInput = Union[AudioTrack, str, bytes]

_INVALID_INPUT_STATUSES = {400, 413, 415, 422}
_AUTH_STATUSES = {401, 403}
# Provider error bodies are only ever logged, and only this much of them
_MAX_LOGGED_BODY = 300


class HTTPTranscriber(Transcriber):
    """
    Shared plumbing for HTTP backends: client lifetime, credential check and
    mapping of transport/status failures onto the transcription error taxonomy.
    No retries happen here; the caller decides.
    """

    audio_format = AudioFormat.WAV
    default_base_url = ""

    def __init__(self, api_key: Optional[str], base_url: Optional[str] = None, timeout: float = 120.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _auth_headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _require_api_key(self) -> None:
        if not self.api_key:
            logger.error(f"{self.name}: API key is not configured")
            raise AuthenticationError(f"{self.name} API key is missing")

    async def open(self) -> None:
        self._require_api_key()
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
            logger.info(f"{self.name} client initialized")

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ProviderUnavailableError(f"{self.name} transcriber used before open()")
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {**self._auth_headers(), **kwargs.pop("headers", {})}
        try:
            response = await self.client.request(method, f"{self.base_url}{url}", headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"{self.name}: request to {url} timed out")
            raise ProviderUnavailableError(f"{self.name} request timed out") from e
        except httpx.HTTPError as e:
            logger.warning(f"{self.name}: request to {url} failed: {type(e).__name__}")
            raise ProviderUnavailableError(f"{self.name} is unreachable") from e
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        logger.debug(f"{self.name} error body: {truncate_tail(response.text, _MAX_LOGGED_BODY)}")
        logger.error(f"{self.name}: HTTP {status} from {response.request.url.path}")
        if status in _AUTH_STATUSES:
            raise AuthenticationError(f"{self.name} rejected the credentials")
        if status in _INVALID_INPUT_STATUSES:
            raise InvalidInputError(f"{self.name} rejected the audio (HTTP {status})")
        raise ProviderUnavailableError(f"{self.name} service error (HTTP {status})")

    def _json_field(self, response: httpx.Response, field: str) -> Any:
        try:
            return response.json()[field]
        except (ValueError, KeyError, TypeError) as e:
            raise ProviderUnavailableError(f"{self.name} returned an unexpected response") from e

    async def _read_audio(self, audio: AudioInput) -> bytes:
        if isinstance(audio, bytes):
            data = audio
        else:
            path = audio.path if isinstance(audio, AudioTrack) else audio
            if not os.path.isfile(path):
                raise InvalidInputError(f"{self.name} requires an existing audio file")
            loop = asyncio.get_running_loop()
            data = await loop.run_in_executor(None, _read_bytes, path)
        if not data:
            raise InvalidInputError("Audio file is empty")
        return data


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


class AssemblyAITranscriber(HTTPTranscriber):
    """
    AssemblyAI speech-to-text over its REST API.

    Accepts a file path, raw bytes or an AudioTrack. Word timestamps arrive in
    milliseconds and are converted to seconds.
    """

    name = "assemblyai"
    default_base_url = "https://api.assemblyai.com"

    def __init__(self, api_key: Optional[str], base_url: Optional[str] = None, speech_model: str = "universal",
                 language: Optional[str] = None, poll_interval: float = 3.0, timeout: float = 120.0,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(api_key, base_url=base_url, timeout=timeout, client=client)
        self.speech_model = speech_model
        self.language = language
        self.poll_interval = poll_interval

    def _auth_headers(self) -> Dict[str, str]:
        return {"authorization": self.api_key or ""}

    async def transcribe(self, audio: AudioInput) -> TranscriptionResult:
        self._require_api_key()
        data = await self._read_audio(audio)
        logger.info(f"Transcribing {len(data)} bytes with AssemblyAI...")

        upload = await self._request("POST", "/v2/upload", content=data,
                                     headers={"content-type": "application/octet-stream"})
        params: Dict[str, Any] = {"audio_url": self._json_field(upload, "upload_url"), "speech_model": self.speech_model}
        if self.language and self.language != "en":
            params["language_code"] = self.language

        submitted = (await self._request("POST", "/v2/transcript", json=params)).json()
        transcript_id = submitted.get("id")
        if not transcript_id:
            raise ProviderUnavailableError("AssemblyAI did not return a transcript id")
        logger.info(f"AssemblyAI transcript {transcript_id} queued")

        transcript = submitted
        while transcript.get("status") not in ("completed", "error"):
            await asyncio.sleep(self.poll_interval)
            transcript = (await self._request("GET", f"/v2/transcript/{transcript_id}")).json()
            logger.debug(f"AssemblyAI transcript {transcript_id} status: {transcript.get('status')}")

        if transcript["status"] == "error":
            self._raise_transcript_error(transcript.get("error") or "")

        logger.info("AssemblyAI transcription complete")
        return self.normalize(transcript)

    def _raise_transcript_error(self, message: str) -> None:
        logger.debug(f"AssemblyAI transcript error: {truncate_tail(message, _MAX_LOGGED_BODY)}")
        lowered = message.lower()
        if "api key" in lowered or "unauthorized" in lowered:
            raise AuthenticationError("AssemblyAI rejected the credentials")
        if any(marker in lowered for marker in ("invalid", "audio", "file", "decode")):
            raise InvalidInputError("AssemblyAI could not process the audio")
        raise ProviderUnavailableError("AssemblyAI transcription failed")

    def normalize(self, transcript: Dict[str, Any]) -> TranscriptionResult:
        chunks = [
            TranscriptChunk(
                text=(word.get("text") or "").strip(),
                start=(word.get("start") or 0) / 1000.0,
                end=(word.get("end") or 0) / 1000.0,
            )
            for word in transcript.get("words") or []
        ]
        return TranscriptionResult(
            full_text=(transcript.get("text") or "").strip(),
            chunks=[c for c in chunks if c.text],
            language=transcript.get("language_code") or self.language,
            provider=self.name,
        )


class HuggingFaceInferenceTranscriber(HTTPTranscriber):
    """
    Whisper on the Hugging Face Inference API.

    Sends the file bytes and remaps the returned {"text", "timestamp": [s, e]}
    chunks into TranscriptChunks.
    """

    name = "huggingface"
    default_base_url = "https://api-inference.huggingface.co"

    def __init__(self, api_key: Optional[str], model: str = "openai/whisper-large-v3", base_url: Optional[str] = None,
                 language: Optional[str] = None, timeout: float = 120.0, client: Optional[httpx.AsyncClient] = None):
        super().__init__(api_key, base_url=base_url, timeout=timeout, client=client)
        self.model = model
        self.language = language

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key or ''}"}

    async def transcribe(self, audio: AudioInput) -> TranscriptionResult:
        self._require_api_key()
        data = await self._read_audio(audio)
        logger.info(f"Transcribing {len(data)} bytes with Hugging Face model {self.model}...")

        parameters: Dict[str, Any] = {"return_timestamps": True}
        if self.language:
            parameters["generate_kwargs"] = {"language": self.language}
        payload = {"inputs": base64.b64encode(data).decode("ascii"), "parameters": parameters}
        response = await self._request("POST", f"/models/{self.model}", json=payload)

        try:
            output = response.json()
        except ValueError as e:
            raise ProviderUnavailableError("Hugging Face returned an unreadable response") from e
        if isinstance(output, list):
            output = output[0] if output else {}
        if not isinstance(output, dict) or "error" in output:
            logger.debug(f"Hugging Face error payload: {truncate_tail(str(output), _MAX_LOGGED_BODY)}")
            raise ProviderUnavailableError("Hugging Face transcription failed")

        logger.info("Hugging Face transcription complete")
        return self.normalize(output)

    def normalize(self, output: Dict[str, Any]) -> TranscriptionResult:
        return TranscriptionResult(
            full_text=(output.get("text") or "").strip(),
            chunks=chunks_from_timestamp_pairs(output.get("chunks")),
            language=self.language,
            provider=self.name,
        )
