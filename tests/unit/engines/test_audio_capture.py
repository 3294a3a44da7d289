# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for AudioCapture.
"""

import struct
import time

import pytest

from core.exceptions import AlreadyActive, DeviceUnavailable, NotActive
from engines.audio.capture import AudioCapture, compute_level


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


class TestComputeLevel:
    def test_silence_is_zero(self):
        assert compute_level(bytes(320)) == 0.0

    def test_full_scale_is_clamped_to_one(self):
        loud = struct.pack("<h", -32768) * 160
        assert compute_level(loud) == 1.0

        positive = struct.pack("<h", 32767) * 160
        assert 0.99 < compute_level(positive) <= 1.0

    def test_empty_and_odd_buffers(self):
        assert compute_level(b"") == 0.0
        assert compute_level(b"\x01") == 0.0

    def test_constant_signal(self):
        assert compute_level(b"\x00\x10" * 80) == pytest.approx(4096 / 32768)


class TestCaptureSession:
    def test_start_stop_returns_recording(self, fake_pyaudio):
        capture = AudioCapture(pyaudio_module=fake_pyaudio)

        capture.start()
        assert capture.is_active
        assert wait_for(lambda: capture.elapsed_ms.value >= 30)
        clip = capture.stop()

        assert not capture.is_active
        assert clip is not None
        assert clip.sample_rate_hz == 8000
        assert len(clip.raw_samples) % 160 == 0
        assert set(clip.raw_samples[::2]) == {0x00}
        assert clip.duration_ms >= 30

        kwargs, stream = fake_pyaudio.opened[0]
        assert kwargs["input"] is True
        assert kwargs["rate"] == 8000
        assert kwargs["frames_per_buffer"] == 80
        assert stream.closed

    def test_level_is_published_during_capture(self, fake_pyaudio):
        capture = AudioCapture(pyaudio_module=fake_pyaudio)
        levels = []
        capture.level.subscribe(levels.append, emit_current=False)

        capture.start()
        assert wait_for(lambda: capture.level.value > 0)
        capture.stop()

        assert levels[0] == pytest.approx(0.125)
        assert capture.level.value == 0.0

    def test_double_start_raises(self, fake_pyaudio):
        capture = AudioCapture(pyaudio_module=fake_pyaudio)
        capture.start()
        try:
            with pytest.raises(AlreadyActive):
                capture.start()
        finally:
            capture.stop()

    def test_stop_without_start_raises(self, fake_pyaudio):
        capture = AudioCapture(pyaudio_module=fake_pyaudio)

        with pytest.raises(NotActive):
            capture.stop()

    def test_device_failure(self, pyaudio_factory):
        capture = AudioCapture(pyaudio_module=pyaudio_factory(fail_open=True))

        with pytest.raises(DeviceUnavailable):
            capture.start()
        assert not capture.is_active

    def test_sessions_are_independent(self, fake_pyaudio):
        capture = AudioCapture(pyaudio_module=fake_pyaudio)

        capture.start()
        wait_for(lambda: capture.elapsed_ms.value >= 10)
        capture.stop()

        fake_pyaudio.sample = b"\x00\x20"
        capture.start()
        wait_for(lambda: capture.elapsed_ms.value >= 10)
        second = capture.stop()

        assert set(second.raw_samples[1::2]) == {0x20}

    def test_abort_discards_recording(self, fake_pyaudio):
        capture = AudioCapture(pyaudio_module=fake_pyaudio)
        capture.start()
        wait_for(lambda: capture.elapsed_ms.value >= 10)

        capture.abort()

        assert not capture.is_active
        assert capture.level.value == 0.0
        with pytest.raises(NotActive):
            capture.stop()
        # Aborting an idle capture is a no-op
        capture.abort()

    def test_full_queue_drops_oldest(self, fake_pyaudio):
        capture = AudioCapture(queue_size=2, pyaudio_module=fake_pyaudio)

        capture.start()
        assert wait_for(lambda: capture.dropped_buffers >= 3)
        clip = capture.stop()

        assert capture.buffer_queue.qsize() == 2
        # The recording itself never drops data
        assert len(clip.raw_samples) >= 5 * 160

    def test_iter_buffers_drains_after_stop(self, fake_pyaudio):
        capture = AudioCapture(pyaudio_module=fake_pyaudio)
        capture.start()
        wait_for(lambda: capture.buffer_queue.qsize() >= 3)
        capture.stop()

        buffers = list(capture.iter_buffers(timeout=0.01))

        assert len(buffers) >= 3
        assert capture.get_buffer(timeout=0.01) is None


def test_get_input_devices(fake_pyaudio):
    capture = AudioCapture(pyaudio_module=fake_pyaudio)

    devices = capture.get_input_devices()

    assert devices == [
        {
            "index": 0,
            "name": "device-0",
            "max_input_channels": 1,
            "default_sample_rate": 8000.0,
        }
    ]
    capture.close()
    assert fake_pyaudio.terminated
