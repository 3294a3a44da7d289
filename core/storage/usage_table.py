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
Slot usage table.

The single owner of per-slot usage and in-flight reservations. All reads and
writes go through one re-entrant lock, so a caller holding ``table.lock`` can
combine several operations into one critical section.
"""

import threading
from dataclasses import replace
from typing import Dict, List

from core.exceptions import Overflow, SlotNotFound
from core.storage.models import StorageSlot


class UsageTable:
    """Ordered storage slots plus bytes reserved by pending writes."""

    def __init__(self):
        self.lock = threading.RLock()
        self._slots: Dict[int, StorageSlot] = {}
        self._reserved: Dict[int, int] = {}

    def __len__(self) -> int:
        with self.lock:
            return len(self._slots)

    def add(self, slot: StorageSlot) -> None:
        with self.lock:
            self._slots[slot.index] = slot
            self._reserved.setdefault(slot.index, 0)

    def clear(self) -> None:
        with self.lock:
            self._slots.clear()
            self._reserved.clear()

    def get(self, index: int) -> StorageSlot:
        with self.lock:
            try:
                return self._slots[index]
            except KeyError:
                raise SlotNotFound(index) from None

    def snapshot(self) -> List[StorageSlot]:
        """Slots ordered by index."""
        with self.lock:
            return [self._slots[index] for index in sorted(self._slots)]

    def reserved(self, index: int) -> int:
        with self.lock:
            self.get(index)
            return self._reserved.get(index, 0)

    def available(self, index: int) -> int:
        """Free bytes not already promised to a pending write."""
        with self.lock:
            slot = self.get(index)
            return slot.free_bytes - self._reserved.get(index, 0)

    def reserve(self, index: int, size: int) -> None:
        with self.lock:
            free = self.available(index)
            if size > free:
                raise Overflow(index, size, free)
            self._reserved[index] = self._reserved.get(index, 0) + size

    def release(self, index: int, size: int) -> None:
        with self.lock:
            self.get(index)
            self._reserved[index] = max(0, self._reserved.get(index, 0) - size)

    def commit(self, index: int, size: int) -> StorageSlot:
        """Add ``size`` bytes of usage to slot ``index``."""
        with self.lock:
            slot = self.get(index)
            if size > slot.free_bytes:
                raise Overflow(index, size, slot.free_bytes)
            updated = replace(slot, used_bytes=slot.used_bytes + size)
            self._slots[index] = updated
            return updated

    def set_used(self, index: int, used_bytes: int) -> StorageSlot:
        with self.lock:
            slot = self.get(index)
            bounded = min(max(0, used_bytes), slot.capacity_bytes)
            updated = replace(slot, used_bytes=bounded)
            self._slots[index] = updated
            return updated
