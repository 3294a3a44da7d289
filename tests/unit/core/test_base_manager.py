# SPDX-License-Identifier: Apache-2.0
"""
Unit tests for the shared manager contract.
"""

import asyncio

import pytest

from config.app_config import StorageSettings
from core.base_manager import BaseManager, SystemHealth
from core.exceptions import NoSlotsCreated, NoSpace
from core.storage import SlotAllocator


class StubManager(BaseManager):
    def __init__(self):
        super().__init__("StubManager")
        self.state = SystemHealth.UNUSABLE

    async def initialize(self):
        self.state = SystemHealth.READY
        self._mark_initialized()
        return True

    @property
    def health(self):
        return self.state

    def _status_details(self):
        return {"extra": 1}


class TestBaseManager:
    @pytest.mark.asyncio
    async def test_status_layout(self):
        manager = StubManager()
        assert manager.get_status() == {
            "name": "StubManager",
            "initialized": False,
            "health": "unusable",
            "last_error": None,
            "extra": 1,
        }

        await manager.initialize()

        status = manager.get_status()
        assert status["initialized"] is True
        assert status["health"] == "ready"

    def test_logger_is_namespaced(self):
        assert StubManager().logger.name.endswith(".stubmanager")

    def test_record_error_publishes_details(self):
        manager = StubManager()
        seen = []
        manager.last_error.subscribe(seen.append, emit_current=False)

        manager._record_error("allocate", NoSpace(100, 10))

        assert seen[-1]["kind"] == "NoSpace"
        assert seen[-1]["category"] == "allocation"
        assert manager.get_status()["last_error"] == "NoSpace"

        manager.clear_error()
        assert manager.last_error.value is None

    def test_cancellation_is_not_recorded(self):
        manager = StubManager()

        manager._record_error("send", asyncio.CancelledError())

        assert manager.last_error.value is None

    def test_abstract_members_are_required(self):
        class Incomplete(BaseManager):
            async def initialize(self):
                return None

        with pytest.raises(TypeError):
            Incomplete()


@pytest.mark.asyncio
async def test_allocator_reports_failed_initialization(chain_client_factory):
    allocator = SlotAllocator(
        chain_client_factory(failing_slots=range(2)), StorageSettings(slot_count=2)
    )

    with pytest.raises(NoSlotsCreated):
        await allocator.initialize()

    status = allocator.get_status()
    assert status["health"] == "unusable"
    assert status["last_error"] == "NoSlotsCreated"
    assert status["slot_count"] == 0
