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
"""Blocking PCM playback sink implemented with PyAudio."""

import importlib
import logging
import threading

from config.constants import (
    DEFAULT_AUDIO_CHANNELS,
    DEFAULT_SAMPLE_RATE_HZ,
    PLAYBACK_WRITE_CHUNK_BYTES,
)
from core.exceptions import DeviceUnavailable

logger = logging.getLogger(__name__)


class AudioPlayback:
    """Writes 16-bit PCM to the default output device.

    ``play`` blocks until the data is written or ``stop`` is called from
    another thread; callers in async code run it via ``asyncio.to_thread``.
    """

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE_HZ,
        channels: int = DEFAULT_AUDIO_CHANNELS,
        write_chunk_bytes: int = PLAYBACK_WRITE_CHUNK_BYTES,
        pyaudio_module=None,
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.write_chunk_bytes = write_chunk_bytes

        self.pyaudio = None
        self._pyaudio_module = pyaudio_module
        self._stop_event = threading.Event()
        self._playing = False

    @property
    def is_playing(self) -> bool:
        return self._playing

    def _ensure_pyaudio_instance(self):
        if self.pyaudio is not None:
            return self.pyaudio

        if self._pyaudio_module is None:
            try:
                self._pyaudio_module = importlib.import_module("pyaudio")
            except ImportError as exc:
                raise DeviceUnavailable(
                    "PyAudio is not installed. Please install it with: pip install pyaudio"
                ) from exc

        try:
            self.pyaudio = self._pyaudio_module.PyAudio()
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to initialize PyAudio: %s", exc)
            raise DeviceUnavailable(f"Failed to initialize audio system: {exc}") from exc
        return self.pyaudio

    def play(self, pcm: bytes) -> int:
        """Write ``pcm`` to the output device.

        Returns:
            Number of bytes written before completion or ``stop``.

        Raises:
            DeviceUnavailable: The output device cannot be opened.
        """
        if not pcm:
            return 0

        # A stop issued while nothing was playing must not cut this call short
        self._stop_event.clear()
        pyaudio_instance = self._ensure_pyaudio_instance()
        try:
            stream = pyaudio_instance.open(
                format=self._pyaudio_module.paInt16,
                channels=self.channels,
                rate=self.sample_rate,
                output=True,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(f"Failed to open audio output device: {exc}")
            raise DeviceUnavailable(f"Cannot open audio output device: {exc}") from exc

        self._playing = True
        written = 0
        logger.info(f"Playing {len(pcm)} bytes of audio")

        try:
            for offset in range(0, len(pcm), self.write_chunk_bytes):
                if self._stop_event.is_set():
                    logger.info("Playback stopped")
                    break
                chunk = pcm[offset:offset + self.write_chunk_bytes]
                stream.write(chunk)
                written += len(chunk)
        finally:
            self._playing = False
            self._stop_event.clear()
            try:
                stream.stop_stream()
                stream.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Error closing audio output stream: {exc}")

        return written

    def stop(self) -> None:
        """Ask an in-progress ``play`` to return after its current write."""
        self._stop_event.set()

    def close(self) -> None:
        self.stop()
        if self.pyaudio:
            self.pyaudio.terminate()
            self.pyaudio = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
