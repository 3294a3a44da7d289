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
"""Observable values for broadcasting state to UI and monitoring layers.

``ObservableValue`` holds the latest value of some piece of state and
notifies subscribers whenever it changes. It is thread-safe: the capture
thread updates loudness and duration while asyncio tasks update room state.
Subscribers are invoked on the thread that performed the update; a UI layer
is expected to marshal onto its own thread.
"""

import logging
import threading
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ObservableValue(Generic[T]):
    """A continuously-updated value with change notifications."""

    def __init__(self, initial: T, name: str = ""):
        self._value = initial
        self._name = name
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[T], None]] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def value(self) -> T:
        """Return the latest value (lock-free snapshot)."""
        return self._value

    def set(self, value: T) -> None:
        """Store ``value`` and notify subscribers when it differs."""
        with self._lock:
            if value == self._value:
                return
            self._value = value
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(value)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Subscriber for %s failed: %s", self._name or "value", exc)

    def subscribe(self, callback: Callable[[T], None], emit_current: bool = True) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it.

        Args:
            callback: Invoked with each new value.
            emit_current: Immediately invoke ``callback`` with the current value.
        """
        with self._lock:
            self._subscribers.append(callback)
            current = self._value

        if emit_current:
            try:
                callback(current)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Subscriber for %s failed: %s", self._name or "value", exc)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def __repr__(self) -> str:
        return f"ObservableValue({self._name!r}, {self._value!r})"
