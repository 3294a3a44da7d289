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
"""
Voice room orchestrator.

Coordinates one participant's session: room membership, recording and
sending voice chunks, and fetching chunks back for playback. Three state
machines are exposed as observable values:

* room: ``IDLE -> CREATING|JOINING -> IN_ROOM -> LEAVING -> IDLE``
* transmission: ``TX_IDLE -> TX_RECORDING -> TX_SENDING -> TX_IDLE``
* reception: ``RX_IDLE -> RX_PLAYING -> RX_IDLE``

Each send is at-most-once: a failed send surfaces its error and is never
retried automatically, and its sequence number is never reused.
"""

import asyncio
import secrets
import time
from dataclasses import replace
from datetime import datetime
from typing import Optional, Tuple

from config.app_config import AudioSettings, RoomSettings
from config.constants import SEQUENCE_SEED_UPPER_BOUND
from core.base_manager import BaseManager, SystemHealth
from core.exceptions import (
    AccountNotFound,
    AlreadyTransmitting,
    ChainError,
    ChunkTooLarge,
    EmptyRecording,
    IdentityMissing,
    InvalidTransition,
    NoMessages,
    NotInRoom,
    NotTransmitting,
    OperationCancelled,
    UnsupportedSampleRate,
)
from core.room.models import RoomStatistics, TransportChunk, VoiceMessage, VoiceRoom
from core.room.states import RoomState, RxState, TxState
from engines.audio import codec
from engines.audio.clip import VoiceClip
from engines.chain.account_layout import parse_slot_account, slot_payload
from engines.chain.addresses import room_address
from engines.chain.instructions import build_create_room, build_send_chunk
from utils.observable import ObservableValue


class VoiceRoomManager(BaseManager):
    """
    Orchestrates capture, codec, slot allocation, chain I/O and playback.

    Args:
        chain_client: Chain client with a signing identity
        allocator: Storage slot allocator
        capture: Audio capture engine
        playback: Playback sink with blocking ``play`` and thread-safe ``stop``
        audio_settings: Sample rate and compression ratio
        room_settings: Poll interval and join verification policy
        sequence_start: First sequence number minus one; random by default
    """

    def __init__(
        self,
        chain_client,
        allocator,
        capture,
        playback,
        audio_settings: Optional[AudioSettings] = None,
        room_settings: Optional[RoomSettings] = None,
        sequence_start: Optional[int] = None,
    ):
        super().__init__("VoiceRoomManager")
        self.chain_client = chain_client
        self.allocator = allocator
        self.capture = capture
        self.playback = playback
        self.audio_settings = audio_settings or AudioSettings()
        self.room_settings = room_settings or RoomSettings()

        self.room_state = ObservableValue(RoomState.IDLE, "room.state")
        self.tx_state = ObservableValue(TxState.IDLE, "room.tx_state")
        self.rx_state = ObservableValue(RxState.IDLE, "room.rx_state")
        self.current_room: ObservableValue[Optional[VoiceRoom]] = ObservableValue(
            None, "room.current"
        )
        self.messages: ObservableValue[Tuple[VoiceMessage, ...]] = ObservableValue(
            (), "room.messages"
        )
        self.room_activity: ObservableValue[Optional[datetime]] = ObservableValue(
            None, "room.activity"
        )

        if sequence_start is None:
            sequence_start = secrets.randbelow(SEQUENCE_SEED_UPPER_BOUND)
        self._sequence = sequence_start

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._send_lock = asyncio.Lock()
        self._send_task: Optional[asyncio.Task] = None
        self._play_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._send_cancelled = False
        self._play_cancelled = False

    # ------------------------------------------------------------------
    # Re-exported observables
    # ------------------------------------------------------------------

    @property
    def level(self) -> ObservableValue:
        return self.capture.level

    @property
    def elapsed_ms(self) -> ObservableValue:
        return self.capture.elapsed_ms

    @property
    def slot_usage(self) -> ObservableValue:
        return self.allocator.slot_usage

    @property
    def storage_stats(self) -> ObservableValue:
        return self.allocator.storage_stats

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self):
        """Create the storage slot pool; returns the allocator's report."""
        self._loop = asyncio.get_running_loop()
        try:
            report = await self.allocator.initialize()
        except Exception as exc:
            self._record_error("initialize", exc)
            raise
        self._mark_initialized()
        return report

    @property
    def health(self) -> SystemHealth:
        return self.allocator.health

    def _status_details(self):
        room = self.current_room.value
        return {
            "room_state": self.room_state.value.value,
            "tx_state": self.tx_state.value.value,
            "rx_state": self.rx_state.value.value,
            "room_id": room.room_id if room else None,
            "message_count": len(self.messages.value),
        }

    def cleanup(self) -> None:
        """Stop everything in flight and release audio devices."""
        super().cleanup()
        self.emergency_stop()
        self._stop_polling()
        self.capture.close()
        self.playback.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    @staticmethod
    def _generate_room_id() -> str:
        return f"room-{int(time.time() * 1000)}-{secrets.randbelow(1000)}"

    def _require_identity(self):
        identity = self.chain_client.identity
        if identity is None:
            raise IdentityMissing()
        return identity

    def _remember_loop(self) -> None:
        self._loop = asyncio.get_running_loop()

    # ------------------------------------------------------------------
    # Room membership
    # ------------------------------------------------------------------

    def _require_idle_room(self, operation: str) -> None:
        if self.room_state.value is not RoomState.IDLE:
            raise InvalidTransition(
                f"Cannot {operation} while {self.room_state.value.value}"
            )

    async def create_room(self, room_id: Optional[str] = None) -> VoiceRoom:
        """
        Create a room on chain and enter it.

        Raises:
            InvalidTransition: Not idle
            ChainError: The room could not be created; state returns to IDLE
        """
        self._require_idle_room("create a room")
        self._remember_loop()
        room_id = room_id or self._generate_room_id()
        self.room_state.set(RoomState.CREATING)
        self.logger.info(f"Creating voice room {room_id}")

        try:
            identity = self._require_identity()
            instruction = build_create_room(
                identity.public_key_bytes,
                room_id,
                self.chain_client.settings.voice_chat_program_id,
            )
            await self.chain_client.send_and_confirm(instruction)
        except BaseException as exc:
            self.room_state.set(RoomState.IDLE)
            self._record_error("create_room", exc)
            raise

        now = datetime.now()
        room = VoiceRoom(
            room_id=room_id,
            host_id=identity.public_key,
            participant_count=1,
            is_active=True,
            created_at=now,
            last_activity_at=now,
            on_chain_address=instruction.accounts[0].pubkey,
        )
        self._enter_room(room)
        return room

    async def join_room(self, room_id: str) -> VoiceRoom:
        """
        Enter an existing room.

        Only the room address is derived unless ``rooms.verify_on_join`` is
        set, in which case the room account must exist.
        """
        self._require_idle_room("join a room")
        if not room_id:
            raise ValueError("Room id must not be empty")
        self._remember_loop()
        self.room_state.set(RoomState.JOINING)
        self.logger.info(f"Joining voice room {room_id}")

        try:
            address = room_address(room_id, self.chain_client.settings.voice_chat_program_id)
            if self.room_settings.verify_on_join:
                await self.chain_client.read_account(address)
        except BaseException as exc:
            self.room_state.set(RoomState.IDLE)
            self._record_error("join_room", exc)
            raise

        now = datetime.now()
        room = VoiceRoom(
            room_id=room_id,
            host_id="",
            participant_count=1,
            is_active=True,
            created_at=now,
            last_activity_at=now,
            on_chain_address=address,
        )
        self._enter_room(room)
        return room

    def _enter_room(self, room: VoiceRoom) -> None:
        self.current_room.set(room)
        self.messages.set(())
        self.room_state.set(RoomState.IN_ROOM)
        self._start_polling(room)
        self.logger.info(f"Entered voice room {room.room_id} ({room.on_chain_address})")

    async def leave_room(self) -> None:
        """
        Leave the current room.

        Raises:
            NotInRoom: Not in a room
            InvalidTransition: A transmission or playback is still running
        """
        if self.room_state.value is not RoomState.IN_ROOM:
            raise NotInRoom()
        if self.tx_state.value is not TxState.IDLE or self.rx_state.value is not RxState.IDLE:
            raise InvalidTransition("Stop transmission and playback before leaving the room")

        room = self.current_room.value
        self.room_state.set(RoomState.LEAVING)
        poll_task = self._stop_polling()
        if poll_task is not None:
            try:
                await poll_task
            except asyncio.CancelledError:
                pass

        self.current_room.set(None)
        self.messages.set(())
        self.room_activity.set(None)
        self.room_state.set(RoomState.IDLE)
        self.logger.info(f"Left voice room {room.room_id if room else ''}")

    # ------------------------------------------------------------------
    # Activity polling
    # ------------------------------------------------------------------

    def _start_polling(self, room: VoiceRoom) -> None:
        self._stop_polling()
        self._poll_task = asyncio.create_task(
            self._poll_room_activity(room), name=f"room-poll-{room.room_id}"
        )

    def _stop_polling(self) -> Optional[asyncio.Task]:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done():
            task.cancel()
        return task

    async def _poll_room_activity(self, room: VoiceRoom) -> None:
        while True:
            await asyncio.sleep(self.room_settings.poll_interval)
            try:
                await self.chain_client.read_account(room.on_chain_address)
            except AccountNotFound:
                self.logger.debug(f"Room account {room.on_chain_address} not found yet")
                continue
            except ChainError as exc:
                self.logger.warning(f"Room activity poll failed: {exc}")
                continue
            self.room_activity.set(datetime.now())

    # ------------------------------------------------------------------
    # Transmission
    # ------------------------------------------------------------------

    def start_transmission(self) -> None:
        """
        Start recording a voice message.

        Raises:
            NotInRoom: Not in a room
            AlreadyTransmitting: A recording or send is in progress
            DeviceUnavailable: The microphone cannot be opened
        """
        if self.room_state.value is not RoomState.IN_ROOM:
            raise NotInRoom()
        if self.tx_state.value is not TxState.IDLE:
            raise AlreadyTransmitting()

        try:
            self.capture.start()
        except Exception as exc:
            self._record_error("start_transmission", exc)
            raise
        self.tx_state.set(TxState.RECORDING)
        self.logger.info("Voice transmission started")

    async def stop_transmission(self) -> VoiceMessage:
        """
        Stop recording, then compress, store and confirm the voice chunk.

        Always returns to ``TX_IDLE``; every failure is raised to the caller.

        Raises:
            NotTransmitting: No recording in progress
            EmptyRecording: Nothing was captured
            ChunkTooLarge: The compressed chunk exceeds ``storage.max_chunk_bytes``
            NoSpace: No slot can hold the compressed chunk
            ChainError: The chunk could not be written or confirmed
            OperationCancelled: An emergency stop interrupted the send
        """
        async with self._send_lock:
            if self.tx_state.value is not TxState.RECORDING:
                raise NotTransmitting()
            return await self._run_send("stop_transmission", self._transmit_recording())

    async def send_clip(self, clip: VoiceClip) -> VoiceMessage:
        """
        Compress, store and confirm an existing clip, such as one loaded
        from a WAV file.

        Raises:
            NotInRoom: Not in a room
            AlreadyTransmitting: A recording or send is in progress
            UnsupportedSampleRate: The clip is not at the configured sample rate
            ChunkTooLarge: The compressed clip exceeds ``storage.max_chunk_bytes``
        """
        async with self._send_lock:
            if self.room_state.value is not RoomState.IN_ROOM:
                raise NotInRoom()
            if self.tx_state.value is not TxState.IDLE:
                raise AlreadyTransmitting()
            self.tx_state.set(TxState.SENDING)
            return await self._run_send("send_clip", self._store_clip(clip))

    async def _run_send(self, operation: str, coro) -> VoiceMessage:
        """Run a send as a cancellable task; the send lock must be held."""
        self._remember_loop()
        self._send_cancelled = False
        self._send_task = asyncio.ensure_future(coro)
        try:
            return await self._send_task
        except asyncio.CancelledError:
            if self._send_cancelled:
                error = OperationCancelled("Transmission cancelled by emergency stop")
                self._record_error(operation, error)
                raise error from None
            raise
        except Exception as exc:
            self._record_error(operation, exc)
            raise
        finally:
            self._send_task = None
            self.tx_state.set(TxState.IDLE)

    async def _transmit_recording(self) -> VoiceMessage:
        clip = self.capture.stop()
        if clip is None:
            raise EmptyRecording()
        return await self._store_clip(clip)

    async def _store_clip(self, clip: VoiceClip) -> VoiceMessage:
        self.tx_state.set(TxState.SENDING)

        room = self.current_room.value
        if room is None:
            raise NotInRoom()

        if clip.sample_rate_hz != self.audio_settings.sample_rate:
            raise UnsupportedSampleRate(clip.sample_rate_hz, self.audio_settings.sample_rate)

        payload = codec.compress(clip.raw_samples, self.audio_settings.compression_ratio)
        if not payload:
            raise EmptyRecording()
        max_chunk = self.allocator.settings.max_chunk_bytes
        if len(payload) > max_chunk:
            raise ChunkTooLarge(len(payload), max_chunk)

        identity = self._require_identity()
        sequence = self._next_sequence()
        settings = self.chain_client.settings

        self.logger.info(
            f"Sending {len(payload)} bytes ({clip.duration_ms} ms) as sequence {sequence}"
        )
        async with self.allocator.allocation(len(payload)) as slot:
            chunk = TransportChunk(
                payload=payload,
                target_slot_index=slot.index,
                sequence_number=sequence,
                room_id=room.room_id,
                sender_id=identity.public_key,
            )
            instruction = build_send_chunk(
                identity.public_key_bytes,
                chunk.room_id,
                chunk.payload,
                chunk.target_slot_index,
                chunk.sequence_number,
                settings.storage_program_id,
                settings.voice_chat_program_id,
            )
            outcome = await self.chain_client.send_and_confirm(instruction)

        now = datetime.now()
        message = VoiceMessage(
            sender=chunk.sender_id,
            room_id=chunk.room_id,
            slot_index=chunk.target_slot_index,
            sequence_number=chunk.sequence_number,
            data_length=len(chunk.payload),
            address=instruction.accounts[2].pubkey,
            signature=outcome.handle.signature,
            timestamp=now,
        )
        self.messages.set(self.messages.value + (message,))
        current = self.current_room.value
        if current is not None and current.room_id == room.room_id:
            self.current_room.set(replace(current, last_activity_at=now))

        self.logger.info(
            f"Voice message {sequence} stored in slot {slot.index} ({len(payload)} bytes)"
        )
        return message

    async def send_quick_message(self, duration_s: float = 5.0) -> VoiceMessage:
        """Record for ``duration_s`` seconds and send the result."""
        self.start_transmission()
        try:
            await asyncio.sleep(duration_s)
        except asyncio.CancelledError:
            self.capture.abort()
            self.tx_state.set(TxState.IDLE)
            raise

        if self.tx_state.value is not TxState.RECORDING:
            raise OperationCancelled("Recording was stopped before it could be sent")
        return await self.stop_transmission()

    # ------------------------------------------------------------------
    # Reception
    # ------------------------------------------------------------------

    async def play_latest_message(self, slot_index: Optional[int] = None) -> VoiceClip:
        """
        Fetch a slot's voice data, expand it and play it.

        Plays the slot of the most recent local message unless ``slot_index``
        is given.

        Returns:
            The expanded audio that was handed to the playback sink

        Raises:
            InvalidTransition: Playback already running
            NoMessages: No local message and no explicit slot
            SlotNotFound: Unknown slot index
            AccountNotFound: The slot account does not exist on chain
        """
        if self.rx_state.value is not RxState.IDLE:
            raise InvalidTransition("Playback already in progress")

        if slot_index is None:
            messages = self.messages.value
            if not messages:
                raise NoMessages()
            slot_index = messages[-1].slot_index

        slot = self.allocator.get_slot(slot_index)

        self._remember_loop()
        self.rx_state.set(RxState.PLAYING)
        self._play_cancelled = False
        self._play_task = asyncio.ensure_future(self._receive(slot.index, slot.address))
        try:
            return await self._play_task
        except asyncio.CancelledError:
            if self._play_cancelled:
                raise OperationCancelled("Playback cancelled by emergency stop") from None
            raise
        except Exception as exc:
            self._record_error("play_latest_message", exc)
            raise
        finally:
            self._play_task = None
            self.rx_state.set(RxState.IDLE)

    async def _receive(self, slot_index: int, address: str) -> VoiceClip:
        self.logger.info(f"Retrieving voice data from slot {slot_index}")
        raw = await self.chain_client.read_account(address)

        if self.allocator.settings.reconcile_on_read and raw:
            try:
                observed = parse_slot_account(raw).data_length
            except ValueError:
                observed = 0
            self.allocator.reconcile(slot_index, observed)

        payload = slot_payload(raw)
        pcm = codec.expand(payload, self.audio_settings.compression_ratio)
        if not pcm:
            raise EmptyRecording(f"Storage slot {slot_index} holds no voice data")

        clip = VoiceClip(raw_samples=pcm, sample_rate_hz=self.audio_settings.sample_rate)
        await asyncio.to_thread(self.playback.play, pcm)
        return clip

    # ------------------------------------------------------------------
    # Emergency stop
    # ------------------------------------------------------------------

    def emergency_stop(self) -> None:
        """
        Abort capture, sending and playback immediately.

        Safe to call from any thread and never blocks. Room membership is
        kept.
        """
        self.logger.warning("Emergency stop requested")
        self.capture.abort()
        if self.rx_state.value is RxState.PLAYING and self.playback.is_playing:
            self.playback.stop()

        loop = self._loop
        if loop is None or loop.is_closed():
            self._cancel_operations()
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            self._cancel_operations()
        else:
            loop.call_soon_threadsafe(self._cancel_operations)

    def _cancel_operations(self) -> None:
        send_task = self._send_task
        if send_task is not None and not send_task.done():
            self._send_cancelled = True
            send_task.cancel()

        play_task = self._play_task
        if play_task is not None and not play_task.done():
            self._play_cancelled = True
            play_task.cancel()

        self.tx_state.set(TxState.IDLE)
        self.rx_state.set(RxState.IDLE)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_messages(self) -> Tuple[VoiceMessage, ...]:
        return self.messages.value

    def room_statistics(self) -> Optional[RoomStatistics]:
        room = self.current_room.value
        if room is None:
            return None

        messages = self.messages.value
        return RoomStatistics(
            room_id=room.room_id,
            participant_count=room.participant_count,
            message_count=len(messages),
            total_voice_bytes=sum(message.data_length for message in messages),
            room_duration_seconds=int((datetime.now() - room.created_at).total_seconds()),
            is_active=room.is_active,
            last_message_at=messages[-1].timestamp if messages else None,
        )
