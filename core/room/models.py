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
Voice room data models.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class VoiceRoom:
    room_id: str
    host_id: str
    participant_count: int
    is_active: bool
    created_at: datetime
    last_activity_at: datetime
    on_chain_address: str


@dataclass(frozen=True)
class TransportChunk:
    """A compressed voice payload bound for one storage slot."""

    payload: bytes
    target_slot_index: int
    sequence_number: int
    room_id: str
    sender_id: str


@dataclass(frozen=True)
class VoiceMessage:
    """Local record of a chunk that was written to chain."""

    sender: str
    room_id: str
    slot_index: int
    sequence_number: int
    data_length: int
    address: str
    signature: str = ""
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class RoomStatistics:
    room_id: str
    participant_count: int
    message_count: int
    total_voice_bytes: int
    room_duration_seconds: int
    is_active: bool
    last_message_at: Optional[datetime] = None
