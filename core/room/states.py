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
"""Voice room state machine states."""

from enum import Enum


class RoomState(Enum):
    IDLE = "idle"
    CREATING = "creating"
    JOINING = "joining"
    IN_ROOM = "in_room"
    LEAVING = "leaving"


class TxState(Enum):
    """Transmission sub-state: record, then send."""

    IDLE = "tx_idle"
    RECORDING = "tx_recording"
    SENDING = "tx_sending"


class RxState(Enum):
    """Reception sub-state."""

    IDLE = "rx_idle"
    PLAYING = "rx_playing"
