"""Speech-to-text backends and the common transcriber interface."""

import asyncio
import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, List, Mapping, Optional

import numpy as np
import torch
import whisper
from transformers import pipeline as hf_pipeline

from .exceptions import ConfigurationError, InvalidInputError, ProviderUnavailableError
from .models import SAMPLE_RATE, AudioFormat, AudioTrack, TranscriptChunk, TranscriptionResult
from .utils import pcm16_to_float32

logger = logging.getLogger(__name__)

SILENCE_THRESHOLD = 0.001


def _seconds(value: Any) -> float:
    """Timestamp field to seconds, mapping missing values to the 0 sentinel."""
    if value is None:
        return 0.0
    return float(value)


def chunks_from_timestamp_pairs(raw_chunks: Optional[Iterable[Mapping[str, Any]]]) -> List[TranscriptChunk]:
    """
    Normalizes Hugging Face style chunks, {"text": str, "timestamp": [start, end]}.

    Missing timestamps (None, or a missing end on the final chunk) map to 0,
    which the segmenter treats as "no timing" rather than real timing.
    """
    chunks = []
    for raw in raw_chunks or []:
        text = (raw.get("text") or "").strip()
        if not text:
            continue
        timestamp = raw.get("timestamp") or (None, None)
        start, end = (list(timestamp) + [None, None])[:2]
        chunks.append(TranscriptChunk(text=text, start=_seconds(start), end=_seconds(end)))
    return chunks


class Transcriber(ABC):
    """
    Abstract base class for transcription backends.

    Implementations normalize their output into TranscriptionResult before
    returning, and raise only AuthenticationError, InvalidInputError or
    ProviderUnavailableError. Resources are acquired in `open()` and released
    in `close()`; `async with transcriber:` does both.
    """

    name = "base"
    # Container the audio extractor must produce for this backend
    audio_format = AudioFormat.WAV

    async def open(self) -> None:
        """Acquires models or network clients."""

    async def close(self) -> None:
        """Releases whatever `open()` acquired."""

    async def __aenter__(self) -> "Transcriber":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @abstractmethod
    async def transcribe(self, audio: AudioTrack) -> TranscriptionResult:
        """
        Transcribes the given audio track.

        Raises:
            AuthenticationError: Credentials are missing or rejected.
            InvalidInputError: The audio cannot be used.
            ProviderUnavailableError: The backend failed or is unreachable.
        """


class LocalModelHandle:
    """
    Owns an in-process model with an explicit lifetime.

    Nothing is loaded implicitly: `load()` must run before `get()`, and
    `release()` drops the model (and cached GPU memory).
    """

    def __init__(self, name: str, loader: Callable[[], Any]):
        self.name = name
        self._loader = loader
        self._model = None

    @property
    def loaded(self) -> bool:
        return self._model is not None

    def load(self) -> Any:
        if self._model is None:
            logger.info(f"Loading local model: {self.name}")
            self._model = self._loader()
            logger.info(f"Local model '{self.name}' loaded successfully.")
        return self._model

    def get(self) -> Any:
        if self._model is None:
            raise ProviderUnavailableError(f"Model '{self.name}' is not loaded")
        return self._model

    def release(self) -> None:
        if self._model is None:
            return
        self._model = None
        if torch.cuda.is_available():
            torch.cuda.empty_cache()
        logger.info(f"Released local model: {self.name}")


def resolve_device(device: str) -> str:
    """Validates the requested device, falling back to CPU when CUDA is absent."""
    if device not in ("cuda", "cpu"):
        raise ConfigurationError(f"Invalid device specified: {device}. Choose 'cuda' or 'cpu'.")
    if device == "cuda" and not torch.cuda.is_available():
        logger.warning("CUDA device requested but not available. Falling back to CPU.")
        return "cpu"
    return device


class LocalTranscriber(Transcriber):
    """
    Base for in-process numeric backends.

    They consume raw 16-bit PCM, decoded to float32 samples in [-1, 1]
    (sample / 32768.0), and run the model in the default executor so the
    event loop stays responsive. A timed-out `transcribe` cannot stop
    inference already running in its worker thread, so `close()` waits for
    it to finish before releasing the model.
    """

    audio_format = AudioFormat.PCM

    def __init__(self, handle: LocalModelHandle, device: str = "cpu", language: Optional[str] = "en"):
        self.handle = handle
        self.device = device
        self.language = language
        self._inference_lock = threading.Lock()

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.handle.load)
        except Exception as e:
            logger.error(f"Failed to load local model '{self.handle.name}': {e}", exc_info=True)
            raise ProviderUnavailableError(f"Failed to load local model '{self.handle.name}'") from e

    async def close(self) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._release_when_idle)

    def _release_when_idle(self) -> None:
        with self._inference_lock:
            self.handle.release()

    def _infer(self, samples: np.ndarray) -> TranscriptionResult:
        with self._inference_lock:
            return self._run_model(samples)

    def load_samples(self, audio: AudioTrack) -> np.ndarray:
        if AudioFormat(audio.audio_format) is not AudioFormat.PCM:
            raise InvalidInputError(f"{self.name} expects raw PCM audio, got {audio.audio_format}")
        if not os.path.exists(audio.path):
            raise InvalidInputError(f"Audio file not found: {audio.path}")
        with open(audio.path, "rb") as f:
            data = f.read()
        samples = pcm16_to_float32(data)
        if samples.size == 0:
            raise InvalidInputError("Audio file is empty")

        logger.info(f"Loaded {samples.size} samples ({samples.size / SAMPLE_RATE:.2f} seconds)")
        if float(np.max(np.abs(samples[:10000]))) < SILENCE_THRESHOLD:
            logger.warning("Audio appears to be silent or very quiet")
        return samples

    @abstractmethod
    def _run_model(self, samples: np.ndarray) -> TranscriptionResult:
        """Runs inference synchronously. Called from a worker thread."""

    async def transcribe(self, audio: AudioTrack) -> TranscriptionResult:
        logger.info(f"Starting {self.name} transcription for: {audio.path}")
        if not self.handle.loaded:
            raise ProviderUnavailableError(f"{self.name} transcriber used before open()")

        loop = asyncio.get_running_loop()
        samples = await loop.run_in_executor(None, self.load_samples, audio)
        try:
            result = await loop.run_in_executor(None, self._infer, samples)
        except Exception as e:
            logger.error(f"Error during {self.name} transcription of {audio.path}: {e}", exc_info=True)
            raise ProviderUnavailableError(f"Local transcription failed ({self.name})") from e

        logger.info(f"Transcription completed: {len(result.full_text)} characters, {len(result.chunks)} chunks")
        return result


class TransformersTranscriber(LocalTranscriber):
    """Transcription with a Hugging Face `transformers` automatic-speech-recognition pipeline."""

    name = "local"

    def __init__(
        self,
        model_name: str = "openai/whisper-small",
        device: str = "cpu",
        language: Optional[str] = "en",
        chunk_length_s: int = 30,
        stride_length_s: int = 5,
    ):
        self.model_name = model_name
        self.chunk_length_s = chunk_length_s
        self.stride_length_s = stride_length_s
        device = resolve_device(device)
        logger.info(f"Initializing TransformersTranscriber with model '{model_name}' on device '{device}'")
        handle = LocalModelHandle(model_name, lambda: hf_pipeline(
            "automatic-speech-recognition",
            model=model_name,
            chunk_length_s=chunk_length_s,
            device=device,
        ))
        super().__init__(handle, device=device, language=language)

    def _run_model(self, samples: np.ndarray) -> TranscriptionResult:
        asr = self.handle.get()
        kwargs = {"return_timestamps": True, "stride_length_s": self.stride_length_s}
        if self.language:
            kwargs["generate_kwargs"] = {"language": self.language, "task": "transcribe"}
        output = asr({"raw": samples, "sampling_rate": SAMPLE_RATE}, **kwargs)
        return TranscriptionResult(
            full_text=(output.get("text") or "").strip(),
            chunks=chunks_from_timestamp_pairs(output.get("chunks")),
            language=self.language,
            provider=self.name,
        )


class WhisperTranscriber(LocalTranscriber):
    """Transcription with OpenAI's Whisper package, using word-level timestamps."""

    name = "whisper"

    def __init__(self, model_name: str = "small", device: str = "cpu", fp16: bool = False, language: Optional[str] = "en"):
        """
        Initializes the WhisperTranscriber.

        Args:
            model_name: The name of the Whisper model to use (e.g., "base", "medium.en").
            device: The device to run the model on ("cuda" or "cpu").
            fp16: Whether to use float16 precision (only honoured on CUDA).
            language: Decoding language, or None to let Whisper detect it.
        """
        self.model_name = model_name
        device = resolve_device(device)
        self.fp16 = fp16 and device == "cuda"
        logger.info(f"Initializing WhisperTranscriber with model '{model_name}' on device '{device}' (FP16: {self.fp16})")
        handle = LocalModelHandle(model_name, lambda: whisper.load_model(model_name, device=device))
        super().__init__(handle, device=device, language=language)

    def _run_model(self, samples: np.ndarray) -> TranscriptionResult:
        model = self.handle.get()
        result = model.transcribe(
            samples,
            language=self.language,
            fp16=self.fp16,
            word_timestamps=True,
            verbose=None,
        )

        chunks = []
        for seg_data in result.get("segments", []):
            words = seg_data.get("words") or []
            if words:
                for word in words:
                    chunks.append(TranscriptChunk(
                        text=word.get("word", "").strip(),
                        start=_seconds(word.get("start")),
                        end=_seconds(word.get("end")),
                    ))
            elif "start" in seg_data and "end" in seg_data:
                chunks.append(TranscriptChunk(
                    text=seg_data.get("text", "").strip(),
                    start=_seconds(seg_data["start"]),
                    end=_seconds(seg_data["end"]),
                ))
            else:
                logger.warning(f"Skipping incomplete segment data: {seg_data}")

        return TranscriptionResult(
            full_text=(result.get("text") or "").strip(),
            chunks=[c for c in chunks if c.text],
            language=result.get("language", self.language),
            provider=self.name,
        )


def create_transcriber(config: dict) -> Transcriber:
    """
    Builds the transcriber selected by `transcription.provider`.

    The CAPSYNC_TRANSCRIPTION_PROVIDER environment variable overrides the
    setting when the config is loaded (see config_loader).

    Raises:
        ConfigurationError: For an unknown provider name.
    """
    from .cloud_transcribers import AssemblyAITranscriber, HuggingFaceInferenceTranscriber

    settings = config.get("transcription", {})
    provider = str(settings.get("provider", "local")).strip().lower()
    device = config.get("device", "cpu")
    language = settings.get("language")
    timeout = float(settings.get("request_timeout_seconds", 120.0))
    logger.info(f"Selected transcription provider: {provider}")

    if provider in ("local", "transformers"):
        return TransformersTranscriber(model_name=settings.get("local_model", "openai/whisper-small"), device=device, language=language)
    if provider == "whisper":
        return WhisperTranscriber(
            model_name=settings.get("whisper_model", "small"),
            device=device,
            fp16=bool(settings.get("whisper_fp16", False)),
            language=language,
        )
    if provider == "assemblyai":
        return AssemblyAITranscriber(
            api_key=settings.get("assemblyai_api_key"),
            base_url=settings.get("assemblyai_base_url", AssemblyAITranscriber.default_base_url),
            speech_model=settings.get("assemblyai_speech_model", "universal"),
            language=language,
            poll_interval=float(settings.get("poll_interval_seconds", 3.0)),
            timeout=timeout,
        )
    if provider in ("huggingface", "hf"):
        return HuggingFaceInferenceTranscriber(
            api_key=settings.get("huggingface_api_token"),
            model=settings.get("huggingface_model", "openai/whisper-large-v3"),
            base_url=settings.get("huggingface_base_url", HuggingFaceInferenceTranscriber.default_base_url),
            language=language,
            timeout=timeout,
        )
    raise ConfigurationError(f"Unknown transcription provider '{provider}'")
