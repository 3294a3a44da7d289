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
"""Voice clip model and WAV persistence."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Union

import numpy as np
import soundfile as sf

from config.constants import AUDIO_ENCODING_PCM16, DEFAULT_SAMPLE_RATE_HZ, SAMPLE_WIDTH_BYTES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceClip:
    """An immutable recording of signed 16-bit little-endian mono PCM."""

    raw_samples: bytes
    sample_rate_hz: int = DEFAULT_SAMPLE_RATE_HZ
    captured_at: datetime = field(default_factory=datetime.now)
    encoding: str = AUDIO_ENCODING_PCM16

    @property
    def sample_count(self) -> int:
        return len(self.raw_samples) // SAMPLE_WIDTH_BYTES

    @property
    def duration_ms(self) -> int:
        if self.sample_rate_hz <= 0:
            return 0
        return self.sample_count * 1000 // self.sample_rate_hz

    def to_array(self) -> np.ndarray:
        """Samples as an ``int16`` array (a trailing odd byte is ignored)."""
        usable = self.sample_count * SAMPLE_WIDTH_BYTES
        return np.frombuffer(self.raw_samples[:usable], dtype="<i2")


def save_clip(clip: VoiceClip, path: Union[str, Path]) -> Path:
    """Write ``clip`` as a 16-bit PCM WAV file and return the path."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(target), clip.to_array(), clip.sample_rate_hz, subtype="PCM_16")
    logger.info(f"Saved {clip.duration_ms} ms voice clip to {target}")
    return target


def load_clip(path: Union[str, Path]) -> VoiceClip:
    """
    Read a WAV (or any soundfile-supported) file into a ``VoiceClip``.

    Multi-channel audio is reduced to its first channel.
    """
    source = Path(path).expanduser()
    data, sample_rate = sf.read(str(source), dtype="int16", always_2d=True)
    mono = np.ascontiguousarray(data[:, 0]).astype("<i2")
    clip = VoiceClip(raw_samples=mono.tobytes(), sample_rate_hz=int(sample_rate))
    logger.info(f"Loaded {clip.duration_ms} ms voice clip from {source}")
    return clip
