# SPDX-License-Identifier: Apache-2.0
"""
Pytest configuration and shared fakes for ChainVoice tests.
"""

import sys
import threading
import time
import types
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config.app_config import ChainSettings, StorageSettings  # noqa: E402
from core.exceptions import AccountNotFound, TransactionFailed  # noqa: E402
from engines.chain.client import (  # noqa: E402
    ConfirmationOutcome,
    ConfirmationStatus,
    TransactionHandle,
)
from engines.chain.identity import LocalKeypair  # noqa: E402


class FakeInputStream:
    """Blocking-mode input stream that paces reads like a real device."""

    def __init__(self, owner, frames_per_buffer):
        self.owner = owner
        self.frames_per_buffer = frames_per_buffer
        self.reads = 0
        self.stopped = False
        self.closed = False

    def read(self, frames, exception_on_overflow=True):  # noqa: ARG002
        time.sleep(0.001)
        self.reads += 1
        return self.owner.next_buffer(frames)

    def stop_stream(self):
        self.stopped = True

    def close(self):
        self.closed = True


class FakeOutputStream:
    def __init__(self, write_delay=0.0):
        self.written = []
        self.write_delay = write_delay
        self.closed = False

    def write(self, data):
        if self.write_delay:
            time.sleep(self.write_delay)
        self.written.append(bytes(data))

    def stop_stream(self):
        pass

    def close(self):
        self.closed = True


class FakePyAudioModule(types.SimpleNamespace):
    """Stand-in for the ``pyaudio`` module passed to capture and playback."""

    paInt16 = 8

    def __init__(self, sample=b"\x00\x10", fail_open=False, write_delay=0.0):
        super().__init__()
        self.sample = sample
        self.fail_open = fail_open
        self.write_delay = write_delay
        self.opened = []
        self.terminated = False
        module = self

        class _PyAudio:
            def open(self, **kwargs):
                if module.fail_open:
                    raise OSError("device busy")
                if kwargs.get("input"):
                    stream = FakeInputStream(module, kwargs["frames_per_buffer"])
                else:
                    stream = FakeOutputStream(module.write_delay)
                module.opened.append((kwargs, stream))
                return stream

            def get_device_count(self):
                return 2

            def get_device_info_by_index(self, index):
                return {
                    "name": f"device-{index}",
                    "maxInputChannels": 1 if index == 0 else 0,
                    "defaultSampleRate": 8000.0,
                }

            def terminate(self):
                module.terminated = True

        self.PyAudio = _PyAudio

    def next_buffer(self, frames):
        return self.sample * frames


class FakeChainClient:
    """Chain client double recording every instruction it is asked to send."""

    def __init__(self, identity=None, settings=None, failing_slots=(), accounts=None):
        self.identity = identity
        self.settings = settings or ChainSettings(confirm_interval=0)
        self.failing_slots = set(failing_slots)
        self.accounts = dict(accounts or {})
        self.sent = []
        self.reads = []
        self.send_gate = None
        self._lock = threading.Lock()

    async def send_and_confirm(self, instruction):
        if self.send_gate is not None:
            await self.send_gate.wait()
        with self._lock:
            self.sent.append(instruction)
            number = len(self.sent)
        handle = TransactionHandle(signature=f"sig-{number}", instruction=instruction.name)
        index = getattr(instruction.payload, "index", None)
        if index is not None and index in self.failing_slots:
            raise TransactionFailed(handle.signature, "custom program error")
        return ConfirmationOutcome(handle, ConfirmationStatus.CONFIRMED, 1)

    async def read_account(self, address):
        self.reads.append(address)
        try:
            return self.accounts[address]
        except KeyError:
            raise AccountNotFound(address) from None


@pytest.fixture
def identity():
    return LocalKeypair.from_seed(bytes(range(32)))


@pytest.fixture
def fake_pyaudio():
    return FakePyAudioModule()


@pytest.fixture
def chain_client(identity):
    return FakeChainClient(identity=identity)


@pytest.fixture
def storage_settings():
    return StorageSettings()


@pytest.fixture
def pyaudio_factory():
    """Build fake ``pyaudio`` modules with custom behaviour."""
    return FakePyAudioModule


@pytest.fixture
def chain_client_factory(identity):
    def _factory(**kwargs):
        kwargs.setdefault("identity", identity)
        return FakeChainClient(**kwargs)

    return _factory
