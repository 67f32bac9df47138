"""
Audio Capture Module

Owns the recording lifecycle for one account: permission, start/stop/cancel,
elapsed-time tracking, live metering and the hard 10 s auto-stop.

States: idle -> requesting -> recording -> processing -> idle
        (recording|processing) -> idle via cancel_recording()
"""

import asyncio
import inspect
import io
import math
import threading
import time
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

import numpy as np

try:
    import sounddevice as sd
except (ImportError, OSError):  # OSError for missing PortAudio library
    sd = None

from logging_config import get_logger
from system_utils.helpers import create_tracked_task, run_in_daemon_executor
from .errors import CaptureError, PermissionDeniedError, RecordingBusyError

logger = get_logger(__name__)

MAX_DURATION_MS = 10000
TICK_MS = 100
SILENCE_DB = -160.0


class RecordingState(Enum):
    """Capture state machine states."""
    IDLE = "idle"
    REQUESTING = "requesting"    # Waiting for microphone permission
    RECORDING = "recording"
    PROCESSING = "processing"    # Finalizing and reading back the asset


@dataclass(frozen=True)
class AudioSample:
    """
    A finished recording, ready for encoding.

    Attributes:
        data: Container bytes (WAV for the sounddevice backend)
        content_type: MIME type of `data`
        duration_ms: Recorded length
    """
    data: bytes
    content_type: str = "audio/wav"
    duration_ms: int = 0

    @property
    def encoded_length(self) -> int:
        """Length of `data` once base64 encoded."""
        return 4 * math.ceil(len(self.data) / 3)


@dataclass
class RecordingSession:
    """One capture attempt. Owned by the controller, dropped on stop/cancel."""
    started_at: float
    elapsed_ms: int = 0
    metering_db: float = SILENCE_DB
    max_duration_ms: int = MAX_DURATION_MS


@dataclass(frozen=True)
class CaptureSnapshot:
    state: RecordingState
    elapsed_ms: int
    metering_db: float
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.state.value,
            "duration": self.elapsed_ms,
            "metering": self.metering_db,
            "error": self.error,
        }


# =============================================================================
# Recorder backends
# =============================================================================

class RecorderBackend(ABC):
    """The platform recording resource the controller drives."""

    content_type = "audio/wav"

    @abstractmethod
    async def request_permission(self) -> bool:
        ...

    @abstractmethod
    async def open(self) -> None:
        """Acquire the input and start recording. Raises CaptureError."""

    @abstractmethod
    def level_db(self) -> float:
        """Most recent signal level in dBFS (-160..0)."""

    @abstractmethod
    async def finalize(self) -> Optional[bytes]:
        """Stop, close and return the recorded asset (None if nothing usable)."""

    @abstractmethod
    async def discard(self) -> None:
        """Release the resource without producing output. Must be idempotent."""


def rms_dbfs(samples: np.ndarray) -> float:
    """RMS level of int16 samples in dBFS, clamped to [-160, 0]."""
    if samples.size == 0:
        return SILENCE_DB
    rms = float(np.sqrt(np.mean(samples.astype(np.float64) ** 2)))
    if rms <= 0:
        return SILENCE_DB
    return max(SILENCE_DB, min(0.0, 20.0 * math.log10(rms / 32768.0)))


def pcm_to_wav(samples: np.ndarray, sample_rate: int, channels: int) -> bytes:
    """Wrap int16 PCM samples in a WAV container (stdlib wave, no FFmpeg)."""
    buffer = io.BytesIO()
    with wave.open(buffer, 'wb') as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)  # int16
        wav.setframerate(sample_rate)
        wav.writeframes(samples.astype('<i2').tobytes())
    return buffer.getvalue()


class SoundDeviceRecorder(RecorderBackend):
    """
    Microphone recorder on top of sounddevice (PortAudio).

    Captures 44.1 kHz mono int16 through an InputStream callback; the stream
    is opened and closed in the shared executor because PortAudio calls can
    block on some drivers.
    """

    DEFAULT_SAMPLE_RATE = 44100
    CHANNELS = 1

    def __init__(self, device_id: Optional[int] = None, sample_rate: Optional[int] = None):
        self._device_id = device_id
        self.sample_rate = sample_rate or self.DEFAULT_SAMPLE_RATE
        self._stream = None
        self._chunks: List[np.ndarray] = []
        self._chunks_lock = threading.Lock()
        self._level_db = SILENCE_DB

    @staticmethod
    def is_available() -> bool:
        """Check if audio capture is available (sounddevice installed)."""
        return sd is not None

    def _has_input_device(self) -> bool:
        try:
            sd.query_devices(self._device_id, 'input')
            return True
        except (ValueError, sd.PortAudioError) as e:
            logger.warning(f"No usable input device ({self._device_id}): {e}")
            return False

    async def request_permission(self) -> bool:
        # Desktop OSes have no runtime prompt through PortAudio; "permission"
        # means an input device we are allowed to open exists.
        if sd is None:
            logger.error("sounddevice not installed. Audio capture unavailable.")
            return False
        return await run_in_daemon_executor(self._has_input_device)

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug(f"Input stream status: {status}")
        chunk = indata[:, 0].copy() if indata.ndim > 1 else indata.copy()
        with self._chunks_lock:
            self._chunks.append(chunk)
        self._level_db = rms_dbfs(chunk)

    def _open_sync(self) -> None:
        self._chunks = []
        self._level_db = SILENCE_DB
        stream = sd.InputStream(
            samplerate=self.sample_rate,
            channels=self.CHANNELS,
            device=self._device_id,
            dtype='int16',
            callback=self._callback
        )
        stream.start()
        self._stream = stream

    async def open(self) -> None:
        if sd is None:
            raise CaptureError("sounddevice not available")
        try:
            await run_in_daemon_executor(self._open_sync)
        except sd.PortAudioError as e:
            self._stream = None
            raise CaptureError(f"Failed to open input stream: {e}") from e

    def level_db(self) -> float:
        return self._level_db

    def _close_sync(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()

    def _take_chunks(self) -> List[np.ndarray]:
        with self._chunks_lock:
            chunks, self._chunks = self._chunks, []
        return chunks

    async def finalize(self) -> Optional[bytes]:
        try:
            await run_in_daemon_executor(self._close_sync)
        except sd.PortAudioError as e:
            raise CaptureError(f"Failed to close input stream: {e}") from e
        chunks = self._take_chunks()
        self._level_db = SILENCE_DB
        if not chunks:
            return None
        samples = np.concatenate(chunks)
        logger.debug(f"Captured {samples.size / self.sample_rate:.2f}s of audio")
        return pcm_to_wav(samples, self.sample_rate, self.CHANNELS)

    async def discard(self) -> None:
        try:
            await run_in_daemon_executor(self._close_sync)
        except sd.PortAudioError as e:
            logger.warning(f"Error while discarding input stream: {e}")
        self._take_chunks()
        self._level_db = SILENCE_DB


# =============================================================================
# Controller
# =============================================================================

class AudioCaptureController:
    """
    Single-session recording state machine.

    The 100 ms ticker task updates elapsed time and metering and performs
    the auto-stop at the duration ceiling. The ticker is cancelled on every
    exit path, so auto-stop and stop_recording() can never both finish a
    session.
    """

    def __init__(
        self,
        backend: RecorderBackend,
        max_duration_ms: int = MAX_DURATION_MS,
        tick_ms: int = TICK_MS,
        on_auto_stop: Optional[Callable[[AudioSample], Any]] = None,
        on_state_change: Optional[Callable[[RecordingState], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Args:
            backend: Recording resource to drive
            max_duration_ms: Hard ceiling; reaching it triggers auto-stop
            tick_ms: Timer resolution
            on_auto_stop: Called with the AudioSample when the ceiling is hit
                          (sync or async, errors are logged)
            on_state_change: Called on every state transition (sync)
            clock: Monotonic seconds source
        """
        self._backend = backend
        self._max_duration_ms = max_duration_ms
        self._tick_ms = tick_ms
        self.on_auto_stop = on_auto_stop
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = RecordingState.IDLE
        self._session: Optional[RecordingSession] = None
        self._ticker: Optional[asyncio.Task] = None
        self._error: Optional[str] = None
        # Bumped on cancel so in-flight awaits can tell they were superseded
        self._generation = 0

    @property
    def state(self) -> RecordingState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def is_active(self) -> bool:
        return self._state != RecordingState.IDLE

    def snapshot(self) -> CaptureSnapshot:
        session = self._session
        return CaptureSnapshot(
            state=self._state,
            elapsed_ms=session.elapsed_ms if session else 0,
            metering_db=session.metering_db if session else SILENCE_DB,
            error=self._error,
        )

    def _set_state(self, new_state: RecordingState) -> None:
        if new_state == self._state:
            return
        logger.debug(f"Capture state: {self._state.value} -> {new_state.value}")
        self._state = new_state
        if self.on_state_change:
            try:
                self.on_state_change(new_state)
            except Exception as e:
                logger.error(f"State change callback failed: {e}", exc_info=True)

    def _reset(self) -> None:
        self._session = None
        self._set_state(RecordingState.IDLE)

    def _cancel_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        if ticker is not None and not ticker.done() and ticker is not asyncio.current_task():
            ticker.cancel()

    async def start_recording(self) -> None:
        """
        Begin a new session.

        Raises:
            RecordingBusyError: a session is already active
            PermissionDeniedError: microphone access refused (state back to idle)
            CaptureError: the recording resource failed to open (state back to idle)
        """
        if self._state != RecordingState.IDLE:
            raise RecordingBusyError(f"Recording already in progress ({self._state.value})")

        self._error = None
        self._generation += 1
        generation = self._generation
        self._set_state(RecordingState.REQUESTING)

        try:
            granted = await self._backend.request_permission()
        except Exception as e:
            await self._abort_start(e)

        if generation != self._generation:
            return  # Cancelled while waiting for permission
        if not granted:
            error = PermissionDeniedError()
            self._fail(str(error))
            raise error

        try:
            await self._backend.open()
        except Exception as e:
            await self._abort_start(e)

        if generation != self._generation:
            await self._backend.discard()
            return

        self._session = RecordingSession(started_at=self._clock(), max_duration_ms=self._max_duration_ms)
        self._set_state(RecordingState.RECORDING)
        self._ticker = create_tracked_task(self._tick_loop(generation))
        logger.info(f"Recording started (auto-stop at {self._max_duration_ms} ms)")

    async def _abort_start(self, error: Exception) -> None:
        """Release the resource, return to idle and raise a CaptureError."""
        if not isinstance(error, CaptureError):
            logger.error(f"Recorder backend failed during start: {error}", exc_info=True)
        try:
            await self._backend.discard()
        finally:
            self._fail(str(error))
        if isinstance(error, CaptureError):
            raise error
        raise CaptureError(str(error)) from error

    def _fail(self, message: str) -> None:
        logger.warning(f"Recording failed: {message}")
        self._error = message
        self._reset()

    def _update_session(self) -> None:
        session = self._session
        if session is None:
            return
        session.elapsed_ms = int((self._clock() - session.started_at) * 1000)
        session.metering_db = self._backend.level_db()

    async def _tick_loop(self, generation: int) -> None:
        interval = self._tick_ms / 1000.0
        while self._state == RecordingState.RECORDING and generation == self._generation:
            await asyncio.sleep(interval)
            if self._state != RecordingState.RECORDING or generation != self._generation:
                return
            self._update_session()
            if self._session.elapsed_ms >= self._max_duration_ms:
                await self._auto_stop()
                return

    async def _auto_stop(self) -> None:
        logger.info(f"Max duration reached ({self._max_duration_ms} ms), stopping")
        # Detach: the stop sequence must not cancel the task it runs in
        self._ticker = None
        sample = await self._finish()
        if sample is None or self.on_auto_stop is None:
            return
        try:
            result = self.on_auto_stop(sample)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Auto-stop callback failed: {e}", exc_info=True)

    async def stop_recording(self) -> Optional[AudioSample]:
        """
        Finish the session and return its sample.

        Returns None when not recording or when the resource produced no
        readable output (the reason is kept in `error`).
        """
        if self._state != RecordingState.RECORDING:
            logger.debug(f"stop_recording ignored in state {self._state.value}")
            return None
        return await self._finish()

    async def _finish(self) -> Optional[AudioSample]:
        generation = self._generation
        self._update_session()
        self._set_state(RecordingState.PROCESSING)
        self._cancel_ticker()
        elapsed_ms = self._session.elapsed_ms if self._session else 0

        try:
            data = await self._backend.finalize()
        except Exception as e:
            if not isinstance(e, CaptureError):
                logger.error(f"Finalizing recording failed: {e}", exc_info=True)
            try:
                await self._backend.discard()
            finally:
                if generation == self._generation:
                    self._fail(str(e))
            return None

        if generation != self._generation:
            return None  # Cancelled while finalizing

        self._reset()
        if not data:
            self._error = "No recording output"
            logger.warning("Recording produced no readable output")
            return None

        sample = AudioSample(data=data, content_type=self._backend.content_type, duration_ms=elapsed_ms)
        logger.info(f"Recording stopped ({elapsed_ms} ms, {len(data) / 1024:.1f} KB)")
        return sample

    async def cancel_recording(self) -> None:
        """
        Discard any in-progress session. Safe from any state.

        Always releases the recording resource and resets duration/metering.
        """
        was_active = self._state != RecordingState.IDLE
        self._generation += 1
        self._cancel_ticker()
        try:
            if was_active:
                await self._backend.discard()
        finally:
            self._error = None
            self._reset()
        if was_active:
            logger.info("Recording cancelled")
