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
Base manager class for ChainVoice.

The storage allocator and the room orchestrator share one contract: both
report a ``SystemHealth``, publish their most recent failure on a
``last_error`` observable and describe themselves through ``get_status``.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from utils.error_handler import ErrorHandler
from utils.logger import APP_LOGGER_NAME
from utils.observable import ObservableValue


class SystemHealth(Enum):
    """Whether a manager can do useful work."""

    READY = "ready"
    DEGRADED = "degraded"  # some slots failed to initialize
    UNUSABLE = "unusable"  # no slots, or no identity to sign with


class BaseManager(ABC):
    """
    Abstract base class for the async managers in ChainVoice.

    Subclasses implement ``initialize`` and ``health`` and may extend the
    status dictionary through ``_status_details``.
    """

    def __init__(self, name: Optional[str] = None):
        self._name = name or self.__class__.__name__
        self._logger = logging.getLogger(f"{APP_LOGGER_NAME}.{self._name.lower()}")
        self._initialized = False

        self.last_error: ObservableValue[Optional[dict]] = ObservableValue(
            None, f"{self._name.lower()}.last_error"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _mark_initialized(self) -> None:
        self._initialized = True
        self._logger.info(f"{self._name} initialized successfully")

    @abstractmethod
    async def initialize(self) -> Any:
        """
        Bring the manager into a usable state.

        Returns:
            A manager-specific initialization report
        """

    @property
    @abstractmethod
    def health(self) -> SystemHealth:
        """Current health, derived from the manager's own state."""

    def _record_error(self, operation: str, error: BaseException) -> None:
        """Publish ``error`` on ``last_error``; cancellation is not an error."""
        if not isinstance(error, Exception):
            return
        self.last_error.set(
            ErrorHandler.handle_error(error, {"operation": operation, "manager": self._name})
        )

    def clear_error(self) -> None:
        self.last_error.set(None)

    def _status_details(self) -> Dict[str, Any]:
        return {}

    def get_status(self) -> Dict[str, Any]:
        """
        Describe the manager for logs and the CLI.

        Returns:
            Name, initialization flag, health, the kind of the last error and
            any subclass details
        """
        error = self.last_error.value
        status = {
            "name": self._name,
            "initialized": self._initialized,
            "health": self.health.value,
            "last_error": error["kind"] if error else None,
        }
        status.update(self._status_details())
        return status

    def cleanup(self) -> None:
        """Release resources; the default only logs."""
        self._logger.debug(f"Cleaning up {self._name}")
