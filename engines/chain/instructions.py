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
Wire-format instructions for the storage and voice chat programs.

Each payload variant is a frozen dataclass with its own ``encode()``; all
integers are little-endian:

* ``CreateSlot``: ``0x01 | index:u8`` (2 bytes)
* ``CreateRoom``: ``0x02 | len:u32 | room_id`` (5 + len bytes)
* ``SendChunk``: ``0x03 | len:u32 | payload | slot_index:u8 | sequence:u64``
  (13 + len bytes)

The ``build_*`` helpers attach the account references each program expects,
in the order it expects them.
"""

import struct
from dataclasses import dataclass
from typing import List, Union

from config.constants import (
    MAX_ROOM_ID_LENGTH,
    STORAGE_MANAGER_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    VOICE_CHAT_MANAGER_PROGRAM_ID,
)
from engines.chain.addresses import b58encode, message_address, room_address, slot_address

OPCODE_CREATE_SLOT = 0x01
OPCODE_CREATE_ROOM = 0x02
OPCODE_SEND_CHUNK = 0x03

_U8_MAX = 0xFF
_U32_MAX = 0xFFFFFFFF
_U64_MAX = 0xFFFFFFFFFFFFFFFF


@dataclass(frozen=True)
class AccountMeta:
    """An account referenced by an instruction."""

    pubkey: str
    is_signer: bool = False
    is_writable: bool = False


@dataclass(frozen=True)
class CreateSlot:
    index: int

    def __post_init__(self):
        if not 0 <= self.index <= _U8_MAX:
            raise ValueError(f"Slot index out of range: {self.index}")

    def encode(self) -> bytes:
        return struct.pack("<BB", OPCODE_CREATE_SLOT, self.index)


@dataclass(frozen=True)
class CreateRoom:
    room_id: str

    def __post_init__(self):
        if not self.room_id:
            raise ValueError("Room id must not be empty")
        if len(self.room_id.encode("utf-8")) > MAX_ROOM_ID_LENGTH:
            raise ValueError(
                f"Room id longer than {MAX_ROOM_ID_LENGTH} bytes: {self.room_id!r}"
            )

    def encode(self) -> bytes:
        raw = self.room_id.encode("utf-8")
        return struct.pack("<BI", OPCODE_CREATE_ROOM, len(raw)) + raw


@dataclass(frozen=True)
class SendChunk:
    payload: bytes
    slot_index: int
    sequence_number: int

    def __post_init__(self):
        if len(self.payload) > _U32_MAX:
            raise ValueError("Chunk payload too large")
        if not 0 <= self.slot_index <= _U8_MAX:
            raise ValueError(f"Slot index out of range: {self.slot_index}")
        if not 0 <= self.sequence_number <= _U64_MAX:
            raise ValueError(f"Sequence number out of range: {self.sequence_number}")

    def encode(self) -> bytes:
        return (
            struct.pack("<BI", OPCODE_SEND_CHUNK, len(self.payload))
            + bytes(self.payload)
            + struct.pack("<BQ", self.slot_index, self.sequence_number)
        )


InstructionPayload = Union[CreateSlot, CreateRoom, SendChunk]


@dataclass(frozen=True)
class ChainInstruction:
    """A program invocation: target program, ordered accounts, payload."""

    program_id: str
    accounts: List[AccountMeta]
    payload: InstructionPayload

    @property
    def data(self) -> bytes:
        return self.payload.encode()

    @property
    def name(self) -> str:
        return type(self.payload).__name__


def _authority_metas(authority_pubkey: bytes) -> List[AccountMeta]:
    return [
        AccountMeta(b58encode(authority_pubkey), is_signer=True, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID),
    ]


def build_create_slot(
    authority_pubkey: bytes,
    index: int,
    storage_program_id: str = STORAGE_MANAGER_PROGRAM_ID,
) -> ChainInstruction:
    """CreateSlot accounts: ``[slot(w), authority(s,w), system]``."""
    slot = slot_address(authority_pubkey, index, storage_program_id)
    return ChainInstruction(
        program_id=storage_program_id,
        accounts=[AccountMeta(slot, is_writable=True)] + _authority_metas(authority_pubkey),
        payload=CreateSlot(index),
    )


def build_create_room(
    authority_pubkey: bytes,
    room_id: str,
    voice_chat_program_id: str = VOICE_CHAT_MANAGER_PROGRAM_ID,
) -> ChainInstruction:
    """CreateRoom accounts: ``[room(w), authority(s,w), system]``."""
    payload = CreateRoom(room_id)
    room = room_address(room_id, voice_chat_program_id)
    return ChainInstruction(
        program_id=voice_chat_program_id,
        accounts=[AccountMeta(room, is_writable=True)] + _authority_metas(authority_pubkey),
        payload=payload,
    )


def build_send_chunk(
    authority_pubkey: bytes,
    room_id: str,
    payload: bytes,
    slot_index: int,
    sequence_number: int,
    storage_program_id: str = STORAGE_MANAGER_PROGRAM_ID,
    voice_chat_program_id: str = VOICE_CHAT_MANAGER_PROGRAM_ID,
) -> ChainInstruction:
    """SendChunk accounts: ``[room(w), slot(w), message(w), authority(s,w), system]``."""
    chunk = SendChunk(payload, slot_index, sequence_number)
    room = room_address(room_id, voice_chat_program_id)
    slot = slot_address(authority_pubkey, slot_index, storage_program_id)
    message = message_address(authority_pubkey, sequence_number, voice_chat_program_id)
    return ChainInstruction(
        program_id=voice_chat_program_id,
        accounts=[
            AccountMeta(room, is_writable=True),
            AccountMeta(slot, is_writable=True),
            AccountMeta(message, is_writable=True),
        ] + _authority_metas(authority_pubkey),
        payload=chunk,
    )
