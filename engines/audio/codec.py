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
Fixed-ratio byte codec for voice payloads.

``compress`` keeps every ``ratio``-th byte of the input (decimation) and
``expand`` repeats each byte ``ratio`` times (hold). Both operate on raw
bytes, not on 16-bit samples, so the pair is lossy and is not a round trip:

    len(expand(compress(x, r), r)) == len(x) - len(x) % r

while the content generally differs from ``x``.
"""

import numpy as np

from core.exceptions import InvalidRatio


def _check_ratio(ratio) -> int:
    # bool is an int subclass but never a meaningful ratio
    if isinstance(ratio, bool) or not isinstance(ratio, (int, np.integer)) or ratio < 1:
        raise InvalidRatio(ratio)
    return int(ratio)


def compress(data: bytes, ratio: int) -> bytes:
    """Return every ``ratio``-th byte of ``data`` after dropping the tail remainder."""
    ratio = _check_ratio(ratio)
    usable = len(data) - len(data) % ratio
    return bytes(data[:usable:ratio])


def expand(data: bytes, ratio: int) -> bytes:
    """Return ``data`` with each byte repeated ``ratio`` times."""
    ratio = _check_ratio(ratio)
    if not data:
        return b""
    return np.repeat(np.frombuffer(bytes(data), dtype=np.uint8), ratio).tobytes()
