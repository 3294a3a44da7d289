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
Application-wide constants for ChainVoice.

This module contains constants used across multiple modules to avoid
hardcoded values throughout the codebase.
"""

# ============================================================================
# Audio Processing Constants
# ============================================================================

# 8 kHz / 16-bit mono: 16 KB per second, so one 30 KB slot holds ~1.9 s.
DEFAULT_SAMPLE_RATE_HZ = 8000
DEFAULT_AUDIO_CHANNELS = 1
SAMPLE_WIDTH_BYTES = 2
DEFAULT_CHUNK_FRAMES = 80  # 10ms at 8kHz
DEFAULT_CAPTURE_QUEUE_SIZE = 256
DEFAULT_COMPRESSION_RATIO = 2

# For int16 to float conversion
AUDIO_NORMALIZATION_DIVISOR = 32768.0

# Playback write loop
PLAYBACK_WRITE_CHUNK_BYTES = 1024

AUDIO_ENCODING_PCM16 = "pcm_16bit"

# ============================================================================
# Storage Slot Constants
# ============================================================================

DEFAULT_SLOT_COUNT = 10
DEFAULT_SLOT_CAPACITY_BYTES = 30 * 1024
# Leave 1 KB of each slot for account metadata
DEFAULT_MAX_CHUNK_BYTES = 29 * 1024
MAX_ROOM_ID_LENGTH = 32

# Utilization thresholds for recommended chunk size
RECOMMENDED_CHUNK_FULL_BELOW_PERCENT = 50
RECOMMENDED_CHUNK_HALF_BELOW_PERCENT = 80

# ============================================================================
# Chain Constants
# ============================================================================

JSON_RPC_VERSION = "2.0"
DEFAULT_RPC_URL = "https://api.devnet.solana.com"
DEFAULT_COMMITMENT = "confirmed"
DEFAULT_CONFIRM_MAX_ATTEMPTS = 30
DEFAULT_CONFIRM_INTERVAL_SECONDS = 1.0
LAMPORTS_PER_SOL = 1_000_000_000
MAX_AIRDROP_SOL = 2.0

STORAGE_MANAGER_PROGRAM_ID = "SU6CRGJXz5ksvXPyUuWXYfW2qmba6ZgHa3sxdr9aYMz"
VOICE_CHAT_MANAGER_PROGRAM_ID = "GVqX9pcoxbiY7i1W3Ad6Sinw1pNpwUHq1tu4tpkH6TF8"
SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

SLOT_SEED = b"storage"
ROOM_SEED = b"voice_room"
MESSAGE_SEED = b"voice_message"

# ============================================================================
# Room Constants
# ============================================================================

DEFAULT_ROOM_POLL_INTERVAL_SECONDS = 5.0
SEQUENCE_SEED_UPPER_BOUND = 1_000_000

# ============================================================================
# Logging Constants
# ============================================================================

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB log file size
LOG_FILE_BACKUP_COUNT = 5  # Number of backup log files
