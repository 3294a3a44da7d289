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
Storage data models.

Value types shared by the usage table, the allocator and its observers. All
of them are immutable snapshots; the usage table swaps in new instances
instead of mutating existing ones.
"""

from dataclasses import dataclass, field
from typing import Dict, Tuple


def _percentage(used: int, capacity: int) -> int:
    if capacity <= 0:
        return 0
    return int(used * 100 / capacity)


@dataclass(frozen=True)
class StorageSlot:
    """One fixed-capacity on-chain storage account."""

    index: int
    capacity_bytes: int
    used_bytes: int = 0
    address: str = ""
    owner: str = ""
    active: bool = True

    @property
    def free_bytes(self) -> int:
        return self.capacity_bytes - self.used_bytes

    @property
    def utilization_percentage(self) -> int:
        return _percentage(self.used_bytes, self.capacity_bytes)


@dataclass(frozen=True)
class SlotUsage:
    index: int
    address: str
    used_bytes: int
    capacity_bytes: int
    utilization_percentage: int
    active: bool

    @classmethod
    def from_slot(cls, slot: StorageSlot) -> "SlotUsage":
        return cls(
            index=slot.index,
            address=slot.address,
            used_bytes=slot.used_bytes,
            capacity_bytes=slot.capacity_bytes,
            utilization_percentage=slot.utilization_percentage,
            active=slot.active,
        )


@dataclass(frozen=True)
class StorageStats:
    total_capacity: int = 0
    used_bytes: int = 0
    free_bytes: int = 0
    slot_count: int = 0
    utilization_percentage: int = 0
    slots: Tuple[SlotUsage, ...] = ()

    @classmethod
    def from_slots(cls, slots) -> "StorageStats":
        slots = tuple(slots)
        total = sum(slot.capacity_bytes for slot in slots)
        used = sum(slot.used_bytes for slot in slots)
        return cls(
            total_capacity=total,
            used_bytes=used,
            free_bytes=total - used,
            slot_count=len(slots),
            utilization_percentage=_percentage(used, total),
            slots=tuple(SlotUsage.from_slot(slot) for slot in slots),
        )


@dataclass(frozen=True)
class SlotInitReport:
    """Outcome of creating the slot pool."""

    attempted: int
    created: Tuple[int, ...] = ()
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return len(self.created) == self.attempted
