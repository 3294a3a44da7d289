# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for VoiceRoomManager.

Capture and playback run against a fake ``pyaudio`` module and the chain is
replaced by ``FakeChainClient``; the allocator is real.
"""

import asyncio
import struct
import threading
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from config.app_config import RoomSettings, StorageSettings
from config.constants import VOICE_CHAT_MANAGER_PROGRAM_ID
from core.exceptions import (
    AccountNotFound,
    AlreadyTransmitting,
    ChunkTooLarge,
    EmptyRecording,
    InvalidTransition,
    NoMessages,
    NoSpace,
    NotInRoom,
    NotTransmitting,
    OperationCancelled,
    StateError,
    TransactionFailed,
    UnsupportedSampleRate,
)
from core.room import RoomState, RxState, TxState, VoiceRoomManager
from core.storage import SlotAllocator
from engines.audio.capture import AudioCapture
from engines.audio.clip import VoiceClip
from engines.audio.playback import AudioPlayback
from engines.chain.addresses import message_address, room_address


def slot_account(payload: bytes, index: int = 0) -> bytes:
    prefix = struct.pack(
        "<8sB32sqIB", b"SLOTDATA", index, b"\x11" * 32, 1_700_000_000, len(payload), 1
    )
    return prefix + payload


def make_manager(chain_client, pyaudio_module, room_settings=None, slot_count=3):
    allocator = SlotAllocator(chain_client, StorageSettings(slot_count=slot_count))
    allocator.attach()
    return VoiceRoomManager(
        chain_client,
        allocator,
        AudioCapture(pyaudio_module=pyaudio_module),
        AudioPlayback(pyaudio_module=pyaudio_module),
        room_settings=room_settings or RoomSettings(poll_interval=60),
        sequence_start=100,
    )


async def shutdown(manager):
    manager.emergency_stop()
    if manager.room_state.value is RoomState.IN_ROOM:
        await manager.leave_room()
    manager.cleanup()


@pytest.fixture
def voice_pyaudio(pyaudio_factory):
    return pyaudio_factory(sample=b"\x07\x10")


@pytest_asyncio.fixture
async def manager(chain_client, voice_pyaudio):
    manager = make_manager(chain_client, voice_pyaudio)
    yield manager
    await shutdown(manager)


async def record(manager, seconds=0.05):
    manager.start_transmission()
    await asyncio.sleep(seconds)


class TestRoomMembership:
    @pytest.mark.asyncio
    async def test_create_room(self, manager, chain_client, identity):
        states = []
        manager.room_state.subscribe(states.append, emit_current=False)

        room = await manager.create_room("demo-room")

        assert states == [RoomState.CREATING, RoomState.IN_ROOM]
        assert room.room_id == "demo-room"
        assert room.host_id == identity.public_key
        assert room.on_chain_address == room_address("demo-room", VOICE_CHAT_MANAGER_PROGRAM_ID)
        assert chain_client.sent[-1].name == "CreateRoom"
        assert manager.current_room.value == room

    @pytest.mark.asyncio
    async def test_generated_room_id(self, manager):
        room = await manager.create_room()

        assert room.room_id.startswith("room-")
        assert len(room.room_id.encode()) <= 32

    @pytest.mark.asyncio
    async def test_create_room_failure_returns_to_idle(self, manager, chain_client):
        chain_client.send_and_confirm = AsyncMock(side_effect=TransactionFailed("sig", "err"))

        with pytest.raises(TransactionFailed):
            await manager.create_room("demo-room")

        assert manager.room_state.value is RoomState.IDLE
        assert manager.current_room.value is None
        assert manager.last_error.value["kind"] == "TransactionFailed"

    @pytest.mark.asyncio
    async def test_join_room_derives_address_only(self, manager, chain_client):
        room = await manager.join_room("other-room")

        assert manager.room_state.value is RoomState.IN_ROOM
        assert room.on_chain_address == room_address("other-room", VOICE_CHAT_MANAGER_PROGRAM_ID)
        assert chain_client.reads == []

    @pytest.mark.asyncio
    async def test_join_room_with_verification(self, chain_client, voice_pyaudio):
        manager = make_manager(
            chain_client, voice_pyaudio, RoomSettings(poll_interval=60, verify_on_join=True)
        )
        try:
            with pytest.raises(AccountNotFound):
                await manager.join_room("missing-room")
            assert manager.room_state.value is RoomState.IDLE

            address = room_address("known-room", VOICE_CHAT_MANAGER_PROGRAM_ID)
            chain_client.accounts[address] = b"room"
            await manager.join_room("known-room")
            assert manager.room_state.value is RoomState.IN_ROOM
        finally:
            await shutdown(manager)

    @pytest.mark.asyncio
    async def test_cannot_create_while_in_room(self, manager):
        await manager.join_room("room-a")

        with pytest.raises(InvalidTransition):
            await manager.create_room("room-b")

    @pytest.mark.asyncio
    async def test_leave_room(self, manager):
        with pytest.raises(NotInRoom):
            await manager.leave_room()

        await manager.join_room("room-a")
        await manager.leave_room()

        assert manager.room_state.value is RoomState.IDLE
        assert manager.current_room.value is None
        assert manager.room_statistics() is None

    @pytest.mark.asyncio
    async def test_leave_room_while_recording_is_rejected(self, manager):
        await manager.join_room("room-a")
        await record(manager, 0.01)

        with pytest.raises(InvalidTransition):
            await manager.leave_room()
        assert manager.room_state.value is RoomState.IN_ROOM

    @pytest.mark.asyncio
    async def test_activity_polling(self, chain_client, voice_pyaudio):
        manager = make_manager(chain_client, voice_pyaudio, RoomSettings(poll_interval=0.01))
        chain_client.accounts[room_address("busy-room", VOICE_CHAT_MANAGER_PROGRAM_ID)] = b"x"
        try:
            await manager.join_room("busy-room")
            for _ in range(100):
                if manager.room_activity.value is not None:
                    break
                await asyncio.sleep(0.01)
            assert manager.room_activity.value is not None
        finally:
            await shutdown(manager)
        assert manager.room_activity.value is None


class TestTransmission:
    @pytest.mark.asyncio
    async def test_requires_room(self, manager):
        with pytest.raises(NotInRoom):
            manager.start_transmission()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, manager):
        await manager.join_room("room-a")

        with pytest.raises(StateError):
            await manager.stop_transmission()
        with pytest.raises(NotTransmitting):
            await manager.stop_transmission()

    @pytest.mark.asyncio
    async def test_double_start(self, manager):
        await manager.join_room("room-a")
        await record(manager, 0.01)

        with pytest.raises(AlreadyTransmitting):
            manager.start_transmission()

    @pytest.mark.asyncio
    async def test_record_and_send(self, manager, chain_client, identity):
        await manager.join_room("room-a")
        states = []
        manager.tx_state.subscribe(states.append, emit_current=False)

        await record(manager)
        message = await manager.stop_transmission()

        assert states == [TxState.RECORDING, TxState.SENDING, TxState.IDLE]
        instruction = chain_client.sent[-1]
        assert instruction.name == "SendChunk"
        chunk = instruction.payload
        assert set(chunk.payload) == {0x07}
        assert chunk.slot_index == 0
        assert chunk.sequence_number == 101

        assert message.sequence_number == 101
        assert message.slot_index == 0
        assert message.data_length == len(chunk.payload)
        assert message.sender == identity.public_key
        assert message.address == message_address(
            identity.public_key_bytes, 101, VOICE_CHAT_MANAGER_PROGRAM_ID
        )
        assert manager.get_messages() == (message,)
        assert manager.allocator.get_slot(0).used_bytes == len(chunk.payload)
        assert manager.storage_stats.value.used_bytes == len(chunk.payload)

    @pytest.mark.asyncio
    async def test_messages_spread_across_slots(self, manager):
        await manager.join_room("room-a")

        first = await manager.send_clip(VoiceClip(raw_samples=bytes(400)))
        second = await manager.send_clip(VoiceClip(raw_samples=bytes(400)))

        assert (first.slot_index, second.slot_index) == (0, 1)
        assert (first.sequence_number, second.sequence_number) == (101, 102)

        stats = manager.room_statistics()
        assert stats.message_count == 2
        assert stats.total_voice_bytes == 400
        assert stats.last_message_at == second.timestamp

    @pytest.mark.asyncio
    async def test_empty_clip(self, manager, chain_client):
        await manager.join_room("room-a")

        with pytest.raises(EmptyRecording):
            await manager.send_clip(VoiceClip(raw_samples=b"\x01"))

        assert manager.tx_state.value is TxState.IDLE
        assert chain_client.sent == []
        assert manager.last_error.value["kind"] == "EmptyRecording"

    @pytest.mark.asyncio
    async def test_oversized_clip_is_rejected_without_consuming_space(self, manager, chain_client):
        await manager.join_room("room-a")

        with pytest.raises(ChunkTooLarge) as exc_info:
            await manager.send_clip(VoiceClip(raw_samples=bytes(2 * 30 * 1024 + 2)))

        assert manager.tx_state.value is TxState.IDLE
        assert chain_client.sent == []
        assert manager.storage_stats.value.used_bytes == 0
        assert exc_info.value.limit == 29 * 1024

        # Rejected before a sequence number is drawn
        message = await manager.send_clip(VoiceClip(raw_samples=bytes(100)))
        assert message.sequence_number == 101

    @pytest.mark.asyncio
    async def test_chunk_at_size_limit_is_stored(self, manager):
        await manager.join_room("room-a")

        message = await manager.send_clip(VoiceClip(raw_samples=bytes(2 * 29 * 1024)))

        assert message.data_length == 29 * 1024

    @pytest.mark.asyncio
    async def test_full_slots_raise_no_space(self, manager, chain_client):
        await manager.join_room("room-a")
        for slot in manager.allocator.get_slots():
            manager.allocator.commit(slot.index, slot.capacity_bytes - 100)

        with pytest.raises(NoSpace):
            await manager.send_clip(VoiceClip(raw_samples=bytes(400)))
        assert chain_client.sent == []

        # Sequence numbers are never reused after a failed send
        manager.allocator.reset(0)
        message = await manager.send_clip(VoiceClip(raw_samples=bytes(400)))
        assert message.sequence_number == 102
        assert message.slot_index == 0

    @pytest.mark.asyncio
    async def test_clip_at_other_sample_rate_is_rejected(self, manager, chain_client):
        await manager.join_room("room-a")

        with pytest.raises(UnsupportedSampleRate):
            await manager.send_clip(VoiceClip(raw_samples=bytes(8820), sample_rate_hz=44100))

        assert manager.tx_state.value is TxState.IDLE
        assert chain_client.sent == []
        assert manager.storage_stats.value.used_bytes == 0
        assert manager.last_error.value["kind"] == "UnsupportedSampleRate"

    @pytest.mark.asyncio
    async def test_failed_send_releases_reservation(self, manager, chain_client):
        await manager.join_room("room-a")
        chain_client.send_and_confirm = AsyncMock(side_effect=TransactionFailed("sig", "err"))

        with pytest.raises(TransactionFailed):
            await manager.send_clip(VoiceClip(raw_samples=bytes(100)))

        assert manager.tx_state.value is TxState.IDLE
        assert manager.storage_stats.value.used_bytes == 0
        assert manager.get_messages() == ()

    @pytest.mark.asyncio
    async def test_emergency_stop_cancels_send(self, manager, chain_client):
        await manager.join_room("room-a")
        chain_client.send_gate = asyncio.Event()

        send = asyncio.create_task(manager.send_clip(VoiceClip(raw_samples=bytes(100))))
        await asyncio.sleep(0.01)
        assert manager.tx_state.value is TxState.SENDING

        manager.emergency_stop()

        with pytest.raises(OperationCancelled):
            await send
        assert manager.tx_state.value is TxState.IDLE
        assert manager.room_state.value is RoomState.IN_ROOM
        assert manager.storage_stats.value.used_bytes == 0
        assert manager.last_error.value["kind"] == "Cancelled"

    @pytest.mark.asyncio
    async def test_emergency_stop_from_another_thread(self, manager):
        await manager.join_room("room-a")
        await record(manager, 0.01)

        stopper = threading.Thread(target=manager.emergency_stop)
        stopper.start()
        stopper.join(timeout=2.0)
        await asyncio.sleep(0)

        assert manager.tx_state.value is TxState.IDLE
        assert not manager.capture.is_active


class TestReception:
    @pytest.mark.asyncio
    async def test_no_messages(self, manager):
        await manager.join_room("room-a")

        with pytest.raises(NoMessages):
            await manager.play_latest_message()
        assert manager.rx_state.value is RxState.IDLE

    @pytest.mark.asyncio
    async def test_play_latest_message(self, manager, chain_client, voice_pyaudio):
        await manager.join_room("room-a")
        await record(manager)
        message = await manager.stop_transmission()

        payload = chain_client.sent[-1].payload.payload
        slot = manager.allocator.get_slot(message.slot_index)
        chain_client.accounts[slot.address] = slot_account(payload, slot.index)
        states = []
        manager.rx_state.subscribe(states.append, emit_current=False)

        clip = await manager.play_latest_message()

        assert states == [RxState.PLAYING, RxState.IDLE]
        assert clip.raw_samples == b"\x07" * (2 * len(payload))
        assert clip.sample_rate_hz == 8000
        _, stream = voice_pyaudio.opened[-1]
        assert b"".join(stream.written) == clip.raw_samples

    @pytest.mark.asyncio
    async def test_play_explicit_slot_reconciles_usage(self, chain_client, voice_pyaudio):
        manager = make_manager(chain_client, voice_pyaudio)
        manager.allocator.settings.reconcile_on_read = True
        slot = manager.allocator.get_slot(2)
        chain_client.accounts[slot.address] = slot_account(b"\x01\x02\x03", 2)
        try:
            clip = await manager.play_latest_message(slot_index=2)

            assert clip.raw_samples == b"\x01\x01\x02\x02\x03\x03"
            assert manager.allocator.get_slot(2).used_bytes == 3
        finally:
            await shutdown(manager)

    @pytest.mark.asyncio
    async def test_empty_slot(self, manager, chain_client):
        slot = manager.allocator.get_slot(1)
        chain_client.accounts[slot.address] = slot_account(b"", 1)

        with pytest.raises(EmptyRecording):
            await manager.play_latest_message(slot_index=1)
        assert manager.rx_state.value is RxState.IDLE

    @pytest.mark.asyncio
    async def test_missing_slot_account(self, manager):
        with pytest.raises(AccountNotFound):
            await manager.play_latest_message(slot_index=0)
        assert manager.last_error.value["kind"] == "NotFound"

    @pytest.mark.asyncio
    async def test_emergency_stop_interrupts_playback(self, chain_client, pyaudio_factory):
        module = pyaudio_factory(write_delay=0.01)
        manager = make_manager(chain_client, module)
        manager.playback.write_chunk_bytes = 16
        slot = manager.allocator.get_slot(0)
        chain_client.accounts[slot.address] = slot_account(bytes(2000), 0)
        try:
            play = asyncio.create_task(manager.play_latest_message(slot_index=0))
            for _ in range(100):
                if manager.playback.is_playing:
                    break
                await asyncio.sleep(0.01)

            manager.emergency_stop()

            with pytest.raises(OperationCancelled):
                await play
            assert manager.rx_state.value is RxState.IDLE
        finally:
            await shutdown(manager)

    @pytest.mark.asyncio
    async def test_emergency_stop_during_fetch_keeps_next_playback_intact(
        self, manager, chain_client, voice_pyaudio
    ):
        slot = manager.allocator.get_slot(0)
        chain_client.accounts[slot.address] = slot_account(bytes(200), 0)
        gate = asyncio.Event()
        read_account = chain_client.read_account

        async def gated_read(address):
            await gate.wait()
            return await read_account(address)

        chain_client.read_account = gated_read
        play = asyncio.create_task(manager.play_latest_message(slot_index=0))
        await asyncio.sleep(0.01)
        assert manager.rx_state.value is RxState.PLAYING

        manager.emergency_stop()
        with pytest.raises(OperationCancelled):
            await play

        gate.set()
        clip = await manager.play_latest_message(slot_index=0)

        assert len(clip.raw_samples) == 400
        _, stream = voice_pyaudio.opened[-1]
        assert b"".join(stream.written) == clip.raw_samples


@pytest.mark.asyncio
async def test_initialize_and_status(chain_client, voice_pyaudio):
    manager = make_manager(chain_client, voice_pyaudio)
    try:
        report = await manager.initialize()

        assert report.complete
        status = manager.get_status()
        assert status["room_state"] == "idle"
        assert status["tx_state"] == "tx_idle"
        assert status["health"] == "ready"
    finally:
        await shutdown(manager)
