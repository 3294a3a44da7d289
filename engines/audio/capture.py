# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 ChainVoice Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Voice capture engine implemented with PyAudio."""

import importlib
import logging
import queue
import threading
from datetime import datetime
from typing import Dict, Iterator, List, Optional

import numpy as np

from config.constants import (
    AUDIO_NORMALIZATION_DIVISOR,
    DEFAULT_AUDIO_CHANNELS,
    DEFAULT_CAPTURE_QUEUE_SIZE,
    DEFAULT_CHUNK_FRAMES,
    DEFAULT_SAMPLE_RATE_HZ,
    SAMPLE_WIDTH_BYTES,
)
from core.exceptions import AlreadyActive, DeviceUnavailable, NotActive
from engines.audio.clip import VoiceClip
from utils.observable import ObservableValue

logger = logging.getLogger(__name__)


def compute_level(buffer: bytes) -> float:
    """Return the RMS loudness of 16-bit little-endian PCM, normalized to [0, 1]."""
    usable = len(buffer) - len(buffer) % SAMPLE_WIDTH_BYTES
    if usable == 0:
        return 0.0

    samples = np.frombuffer(buffer[:usable], dtype="<i2").astype(np.float64)
    rms = np.sqrt(np.mean(samples ** 2)) / AUDIO_NORMALIZATION_DIVISOR
    return float(min(max(rms, 0.0), 1.0))


class AudioCapture:
    """Microphone capture producing one lossless recording per session."""

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE_HZ,
        channels: int = DEFAULT_AUDIO_CHANNELS,
        chunk_frames: int = DEFAULT_CHUNK_FRAMES,
        queue_size: int = DEFAULT_CAPTURE_QUEUE_SIZE,
        device_index: Optional[int] = None,
        pyaudio_module=None,
    ):
        """Initialize the capture interface.

        PyAudio is imported and instantiated lazily so the dependency is only
        required once a session actually starts.

        Args:
            sample_rate: Sampling rate in Hz. Defaults to 8 kHz.
            channels: Number of input channels. Defaults to mono.
            chunk_frames: Frames per read. Defaults to 80 frames (10 ms at
                8 kHz, 160 bytes).
            queue_size: Capacity of the live buffer queue; the oldest buffer
                is dropped when it is full.
            device_index: Input device index, ``None`` for the default device.
            pyaudio_module: Module providing ``PyAudio`` and ``paInt16``.
                Defaults to the installed ``pyaudio``.
        """
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_frames = chunk_frames
        self.device_index = device_index

        self.pyaudio = None
        self.stream = None
        self.capture_thread: Optional[threading.Thread] = None
        self.buffer_queue: "queue.Queue[bytes]" = queue.Queue(maxsize=max(1, queue_size))
        self.dropped_buffers = 0

        self.level = ObservableValue(0.0, "capture.level")
        self.elapsed_ms = ObservableValue(0, "capture.elapsed_ms")

        self._pyaudio_module = pyaudio_module
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._active = False
        self._recording: List[bytes] = []
        self._frames_captured = 0
        self._started_at: Optional[datetime] = None

        logger.info(
            "Audio capture configured: sample_rate=%s, channels=%s, chunk_frames=%s",
            sample_rate,
            channels,
            chunk_frames,
        )

    @property
    def is_active(self) -> bool:
        return self._active

    def _ensure_module_available(self):
        if self._pyaudio_module is not None:
            return self._pyaudio_module

        try:
            self._pyaudio_module = importlib.import_module("pyaudio")
        except ImportError as exc:
            logger.warning("PyAudio module not found; microphone capture is disabled")
            raise DeviceUnavailable(
                "PyAudio is not installed. Please install it with: pip install pyaudio"
            ) from exc
        return self._pyaudio_module

    def _ensure_pyaudio_instance(self):
        if self.pyaudio is not None:
            return self.pyaudio

        pyaudio_module = self._ensure_module_available()
        try:
            self.pyaudio = pyaudio_module.PyAudio()
            logger.info("PyAudio initialized successfully")
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to initialize PyAudio: %s", exc)
            raise DeviceUnavailable(f"Failed to initialize audio system: {exc}") from exc

        return self.pyaudio

    def get_input_devices(self) -> List[Dict]:
        """Return the available audio input devices.

        Returns:
            List[Dict]: Each entry contains the device ``index``, ``name``,
            ``max_input_channels``, and ``default_sample_rate``.
        """
        try:
            pyaudio_instance = self._ensure_pyaudio_instance()
        except DeviceUnavailable as exc:
            logger.warning("Audio input listing unavailable: %s", exc)
            return []

        devices = []
        for i in range(pyaudio_instance.get_device_count()):
            try:
                device_info = pyaudio_instance.get_device_info_by_index(i)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Failed to get info for device {i}: {e}")
                continue

            if device_info.get("maxInputChannels", 0) > 0:
                devices.append(
                    {
                        "index": i,
                        "name": device_info.get("name", "Unknown"),
                        "max_input_channels": device_info.get("maxInputChannels", 0),
                        "default_sample_rate": device_info.get("defaultSampleRate", 0),
                    }
                )

        logger.info(f"Found {len(devices)} input devices")
        return devices

    def start(self) -> None:
        """Open the input device and begin a new capture session.

        Raises:
            AlreadyActive: A session is already running.
            DeviceUnavailable: PyAudio is missing or the device cannot be opened.
        """
        with self._state_lock:
            if self._active:
                raise AlreadyActive()

            pyaudio_instance = self._ensure_pyaudio_instance()
            pyaudio_module = self._ensure_module_available()

            try:
                # Blocking-mode input stream
                self.stream = pyaudio_instance.open(
                    format=pyaudio_module.paInt16,
                    channels=self.channels,
                    rate=self.sample_rate,
                    input=True,
                    input_device_index=self.device_index,
                    frames_per_buffer=self.chunk_frames,
                    stream_callback=None,
                )
            except Exception as exc:  # noqa: BLE001
                logger.error(f"Failed to open audio input device: {exc}")
                raise DeviceUnavailable(f"Cannot open audio input device: {exc}") from exc

            self._recording = []
            self._frames_captured = 0
            self._drain_queue()
            self.dropped_buffers = 0
            self._started_at = datetime.now()
            self._stop_event = threading.Event()
            self._active = True
            self.level.set(0.0)
            self.elapsed_ms.set(0)

            self.capture_thread = threading.Thread(
                target=self._capture_loop,
                args=(self.stream, self._stop_event),
                name="audio-capture",
                daemon=True,
            )
            self.capture_thread.start()

        logger.info(f"Audio capture started (device_index={self.device_index})")

    def _capture_loop(self, stream, stop_event: threading.Event) -> None:
        """Capture loop executed on the background thread."""
        logger.debug("Audio capture loop started")

        while not stop_event.is_set():
            try:
                buffer = stream.read(self.chunk_frames, exception_on_overflow=False)
            except Exception as e:  # noqa: BLE001
                if not stop_event.is_set():
                    logger.error(f"Error in capture loop, ending session: {e}")
                break

            if stop_event.is_set():
                break
            if not buffer:
                continue

            self._recording.append(buffer)
            self._offer(buffer)

            self._frames_captured += len(buffer) // (SAMPLE_WIDTH_BYTES * self.channels)
            self.elapsed_ms.set(self._frames_captured * 1000 // self.sample_rate)
            self.level.set(compute_level(buffer))

        logger.debug("Audio capture loop stopped")

    def _offer(self, buffer: bytes) -> None:
        """Queue ``buffer`` for live consumers, dropping the oldest when full."""
        while True:
            try:
                self.buffer_queue.put_nowait(buffer)
                return
            except queue.Full:
                try:
                    self.buffer_queue.get_nowait()
                    self.dropped_buffers += 1
                except queue.Empty:
                    pass

    def _drain_queue(self) -> None:
        while True:
            try:
                self.buffer_queue.get_nowait()
            except queue.Empty:
                return

    def _close_stream(self, stream) -> None:
        if stream is None:
            return
        try:
            stream.stop_stream()
            stream.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Error closing audio stream: {exc}")

    def stop(self) -> Optional[VoiceClip]:
        """End the session and return everything captured.

        Returns:
            The recording as a ``VoiceClip``, or ``None`` when no buffer was
            captured.

        Raises:
            NotActive: No session is running.
        """
        with self._state_lock:
            if not self._active:
                raise NotActive()

            logger.info("Stopping audio capture...")
            self._stop_event.set()
            thread, self.capture_thread = self.capture_thread, None
            stream, self.stream = self.stream, None

        if thread is not None:
            thread.join(timeout=2.0)
        self._close_stream(stream)

        with self._state_lock:
            self._active = False
            buffers, self._recording = self._recording, []
            started_at = self._started_at or datetime.now()

        self.level.set(0.0)

        if not buffers:
            logger.info("Audio capture stopped with no data")
            return None

        clip = VoiceClip(
            raw_samples=b"".join(buffers),
            sample_rate_hz=self.sample_rate,
            captured_at=started_at,
        )
        logger.info(
            f"Audio capture stopped: {len(clip.raw_samples)} bytes, {clip.duration_ms} ms"
        )
        return clip

    def abort(self) -> None:
        """Stop the session without waiting and discard the recording."""
        with self._state_lock:
            if not self._active:
                return
            self._stop_event.set()
            self._active = False
            thread, self.capture_thread = self.capture_thread, None
            stream, self.stream = self.stream, None
            self._recording = []

        self.level.set(0.0)
        logger.warning("Audio capture aborted")

        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            # Close the stream off-thread once the blocking read returns
            threading.Thread(
                target=self._close_after, args=(thread, stream), daemon=True
            ).start()
        else:
            self._close_stream(stream)

    def _close_after(self, thread: threading.Thread, stream) -> None:
        thread.join(timeout=2.0)
        self._close_stream(stream)

    def get_buffer(self, timeout: float = 1.0) -> Optional[bytes]:
        """Retrieve one live buffer from the queue, or ``None`` on timeout."""
        try:
            return self.buffer_queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def iter_buffers(self, timeout: float = 0.1) -> Iterator[bytes]:
        """Yield live buffers until the session ends and the queue is drained."""
        while self._active or not self.buffer_queue.empty():
            buffer = self.get_buffer(timeout=timeout)
            if buffer is not None:
                yield buffer

    def close(self) -> None:
        """Close the capture interface and release resources."""
        logger.info("Closing audio capture...")

        if self._active:
            self.stop()

        if self.pyaudio:
            self.pyaudio.terminate()
            self.pyaudio = None

        logger.info("Audio capture closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
