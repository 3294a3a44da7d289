"""
Storage slot management module

Provides the bounded on-chain slot pool with load-balanced allocation.
"""

from core.base_manager import SystemHealth
from core.storage.allocator import SlotAllocator
from core.storage.models import SlotInitReport, SlotUsage, StorageSlot, StorageStats
from core.storage.usage_table import UsageTable

__all__ = [
    'SlotAllocator',
    'SlotInitReport',
    'SlotUsage',
    'StorageSlot',
    'StorageStats',
    'SystemHealth',
    'UsageTable',
]
