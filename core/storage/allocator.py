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
Storage slot allocator.

Manages the fixed pool of on-chain storage slots: creates them, picks the
slot each chunk is written to and keeps local usage accounting. Usage lives
in an injected ``UsageTable``; every allocation decision is made while
holding that table's lock.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from config.app_config import StorageSettings
from config.constants import (
    RECOMMENDED_CHUNK_FULL_BELOW_PERCENT,
    RECOMMENDED_CHUNK_HALF_BELOW_PERCENT,
)
from core.base_manager import BaseManager, SystemHealth
from core.exceptions import IdentityMissing, NoSlotsCreated, NoSpace
from core.storage.models import SlotInitReport, SlotUsage, StorageSlot, StorageStats
from core.storage.usage_table import UsageTable
from engines.chain.addresses import slot_address
from engines.chain.instructions import build_create_slot
from utils.observable import ObservableValue


class SlotAllocator(BaseManager):
    """
    Load-balancing allocator over the storage slot pool.

    Args:
        chain_client: Client used to create the slot accounts
        settings: Pool size and capacity settings
        usage_table: Usage table to own; a fresh one by default
    """

    def __init__(
        self,
        chain_client,
        settings: Optional[StorageSettings] = None,
        usage_table: Optional[UsageTable] = None,
    ):
        super().__init__("SlotAllocator")
        self.chain_client = chain_client
        self.settings = settings or StorageSettings()
        self._table = usage_table if usage_table is not None else UsageTable()
        self._last_report: Optional[SlotInitReport] = None

        self.slot_usage: ObservableValue[tuple] = ObservableValue((), "storage.slot_usage")
        self.storage_stats = ObservableValue(StorageStats(), "storage.stats")
        self.initialized = ObservableValue(False, "storage.initialized")

        self._publish()

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> SlotInitReport:
        """
        Create every slot concurrently and keep the ones that succeed.

        Returns:
            Which slot indices were created and why the others failed

        Raises:
            IdentityMissing: No identity to own the slots
            NoSlotsCreated: Not a single slot could be created
        """
        identity = self.chain_client.identity
        if identity is None:
            raise IdentityMissing()

        indices = list(range(self.settings.slot_count))
        self.logger.info(f"Creating {len(indices)} storage slots...")

        results = await asyncio.gather(
            *(self._create_slot(index) for index in indices),
            return_exceptions=True,
        )

        created: List[int] = []
        failed: Dict[int, str] = {}
        last_error: Optional[BaseException] = None

        with self._table.lock:
            self._table.clear()
            for index, result in zip(indices, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    failed[index] = str(result)
                    last_error = result
                    self.logger.warning(f"Storage slot {index} was not created: {result}")
                    continue
                self._table.add(result)
                created.append(index)

        report = SlotInitReport(attempted=len(indices), created=tuple(created), failed=failed)
        self._last_report = report
        self._publish()

        if not created:
            self.initialized.set(False)
            error = NoSlotsCreated(len(indices), last_error)
            self._record_error("initialize", error)
            raise error

        self.clear_error()
        self._mark_initialized()
        self.initialized.set(True)
        self.logger.info(
            f"Storage initialized with {len(created)}/{len(indices)} slots"
        )
        return report

    def attach(self) -> SlotInitReport:
        """
        Register slots created in an earlier session without touching the chain.

        Usage starts at zero; enable ``storage.reconcile_on_read`` to pick up
        on-chain lengths as slots are read.
        """
        identity = self.chain_client.identity
        if identity is None:
            raise IdentityMissing()

        settings = self.chain_client.settings
        indices = list(range(self.settings.slot_count))
        with self._table.lock:
            self._table.clear()
            for index in indices:
                self._table.add(
                    StorageSlot(
                        index=index,
                        capacity_bytes=self.settings.slot_capacity_bytes,
                        address=slot_address(
                            identity.public_key_bytes, index, settings.storage_program_id
                        ),
                        owner=identity.public_key,
                    )
                )

        report = SlotInitReport(attempted=len(indices), created=tuple(indices))
        self._last_report = report
        self._publish()
        self._mark_initialized()
        self.initialized.set(True)
        return report

    async def _create_slot(self, index: int) -> StorageSlot:
        identity = self.chain_client.identity
        settings = self.chain_client.settings
        instruction = build_create_slot(
            identity.public_key_bytes, index, settings.storage_program_id
        )
        await self.chain_client.send_and_confirm(instruction)

        return StorageSlot(
            index=index,
            capacity_bytes=self.settings.slot_capacity_bytes,
            address=instruction.accounts[0].pubkey,
            owner=identity.public_key,
        )

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def _select(self, size: int) -> StorageSlot:
        """Pick the least-occupied active slot that fits; table lock must be held."""
        best: Optional[StorageSlot] = None
        best_occupancy = 0
        largest_free = 0

        for slot in self._table.snapshot():
            if not slot.active:
                continue
            reserved = self._table.reserved(slot.index)
            available = slot.free_bytes - reserved
            largest_free = max(largest_free, available)
            if available < size:
                continue
            occupancy = slot.used_bytes + reserved
            # Snapshot is index-ordered, so strict < keeps the lowest index on ties
            if best is None or occupancy < best_occupancy:
                best, best_occupancy = slot, occupancy

        if best is None:
            raise NoSpace(size, largest_free)
        return best

    def allocate(self, size: int) -> StorageSlot:
        """
        Choose the slot a chunk of ``size`` bytes should be written to.

        Chunks are never split; a chunk larger than every slot's free space
        is rejected.

        Raises:
            ValueError: ``size`` is not positive
            NoSpace: No active slot has room
        """
        if size <= 0:
            raise ValueError(f"Chunk size must be positive, got {size}")
        with self._table.lock:
            return self._select(size)

    def commit(self, index: int, size: int) -> StorageSlot:
        """
        Record ``size`` bytes written to slot ``index``.

        Raises:
            SlotNotFound: Unknown index
            Overflow: The slot does not have ``size`` free bytes
        """
        if size < 0:
            raise ValueError(f"Committed size must not be negative, got {size}")
        slot = self._table.commit(index, size)
        self.logger.debug(f"Committed {size} bytes to slot {index} ({slot.used_bytes} used)")
        self._publish()
        return slot

    @asynccontextmanager
    async def allocation(self, size: int) -> AsyncIterator[StorageSlot]:
        """
        Reserve space for a write and commit it when the block succeeds.

        The reservation keeps concurrent writers from picking the same free
        bytes; it is released without committing if the block raises or is
        cancelled.
        """
        if size <= 0:
            raise ValueError(f"Chunk size must be positive, got {size}")
        with self._table.lock:
            slot = self._select(size)
            self._table.reserve(slot.index, size)

        try:
            yield slot
        except BaseException:
            self._table.release(slot.index, size)
            self.logger.debug(f"Released {size} reserved bytes on slot {slot.index}")
            raise
        else:
            with self._table.lock:
                self._table.release(slot.index, size)
                current = self._table.get(slot.index)
                if size > current.free_bytes:
                    # Usage was reconciled upward while the write was in flight
                    self.logger.warning(
                        f"Slot {slot.index} has {current.free_bytes} free bytes after a "
                        f"confirmed {size}-byte write; marking it full"
                    )
                    self._table.set_used(slot.index, current.capacity_bytes)
                else:
                    self._table.commit(slot.index, size)
            self._publish()

    def reset(self, index: int) -> StorageSlot:
        """Zero the local usage of slot ``index``."""
        slot = self._table.set_used(index, 0)
        self.logger.info(f"Storage slot {index} reset")
        self._publish()
        return slot

    def reconcile(self, index: int, observed_bytes: int) -> StorageSlot:
        """Replace local usage of ``index`` with a length observed on chain."""
        before = self._table.get(index).used_bytes
        slot = self._table.set_used(index, observed_bytes)
        if slot.used_bytes != before:
            self.logger.info(
                f"Slot {index} usage reconciled: {before} -> {slot.used_bytes} bytes"
            )
            self._publish()
        return slot

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_slot(self, index: int) -> StorageSlot:
        return self._table.get(index)

    def get_slots(self) -> List[StorageSlot]:
        return self._table.snapshot()

    def stats(self) -> StorageStats:
        """Usage snapshot computed from local accounting only."""
        return StorageStats.from_slots(self._table.snapshot())

    def has_space_for(self, size: int) -> bool:
        with self._table.lock:
            return any(
                slot.active and self._table.available(slot.index) >= size
                for slot in self._table.snapshot()
            )

    def recommended_chunk_size(self) -> int:
        """Largest chunk worth producing given how full the pool is."""
        utilization = self.stats().utilization_percentage
        max_chunk = self.settings.max_chunk_bytes
        if utilization < RECOMMENDED_CHUNK_FULL_BELOW_PERCENT:
            return max_chunk
        if utilization < RECOMMENDED_CHUNK_HALF_BELOW_PERCENT:
            return max_chunk // 2
        return max_chunk // 4

    @property
    def health(self) -> SystemHealth:
        if self.chain_client.identity is None or len(self._table) == 0:
            return SystemHealth.UNUSABLE
        if self._last_report is not None and not self._last_report.complete:
            return SystemHealth.DEGRADED
        return SystemHealth.READY

    @property
    def last_report(self) -> Optional[SlotInitReport]:
        return self._last_report

    def _status_details(self):
        stats = self.stats()
        return {
            "slot_count": stats.slot_count,
            "used_bytes": stats.used_bytes,
            "total_capacity": stats.total_capacity,
        }

    def _publish(self) -> None:
        slots = self._table.snapshot()
        self.slot_usage.set(tuple(SlotUsage.from_slot(slot) for slot in slots))
        self.storage_stats.set(StorageStats.from_slots(slots))
