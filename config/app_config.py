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
Configuration management for ChainVoice.

Handles loading, validation, and saving of application configuration, plus
typed views over the ``chain``, ``audio``, ``storage`` and ``rooms`` sections.
"""

import copy
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Optional

from config import constants

APP_DIR_NAME = ".chainvoice"


def get_app_dir() -> Path:
    """Return the root directory for ChainVoice user data."""
    return Path.home() / APP_DIR_NAME


logger = logging.getLogger(__name__)


def _filter_known(cls, config_dict: Optional[Mapping]) -> Dict[str, Any]:
    valid_keys = {f.name for f in fields(cls)}
    return {k: v for k, v in (config_dict or {}).items() if k in valid_keys}


@dataclass
class ChainSettings:
    """RPC endpoint, retry and confirmation settings."""

    rpc_url: str = constants.DEFAULT_RPC_URL
    commitment: str = constants.DEFAULT_COMMITMENT
    request_timeout: float = 30.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    confirm_max_attempts: int = constants.DEFAULT_CONFIRM_MAX_ATTEMPTS
    confirm_interval: float = constants.DEFAULT_CONFIRM_INTERVAL_SECONDS
    # Whether an unconfirmed (timed out) transaction still counts as written.
    accept_unconfirmed: bool = False
    program_ids: Dict[str, str] = field(
        default_factory=lambda: {
            "storage_manager": constants.STORAGE_MANAGER_PROGRAM_ID,
            "voice_chat_manager": constants.VOICE_CHAT_MANAGER_PROGRAM_ID,
            "system_program": constants.SYSTEM_PROGRAM_ID,
        }
    )

    @classmethod
    def from_dict(cls, config_dict: Optional[Mapping]) -> "ChainSettings":
        """Create settings from a dictionary, ignoring unknown keys."""
        return cls(**_filter_known(cls, config_dict))

    @property
    def storage_program_id(self) -> str:
        return self.program_ids.get("storage_manager", constants.STORAGE_MANAGER_PROGRAM_ID)

    @property
    def voice_chat_program_id(self) -> str:
        return self.program_ids.get(
            "voice_chat_manager", constants.VOICE_CHAT_MANAGER_PROGRAM_ID
        )

    @property
    def system_program_id(self) -> str:
        return self.program_ids.get("system_program", constants.SYSTEM_PROGRAM_ID)


@dataclass
class AudioSettings:
    """Capture format and compression settings."""

    sample_rate: int = constants.DEFAULT_SAMPLE_RATE_HZ
    chunk_frames: int = constants.DEFAULT_CHUNK_FRAMES
    queue_size: int = constants.DEFAULT_CAPTURE_QUEUE_SIZE
    compression_ratio: int = constants.DEFAULT_COMPRESSION_RATIO
    input_device_index: Optional[int] = None

    @classmethod
    def from_dict(cls, config_dict: Optional[Mapping]) -> "AudioSettings":
        """Create settings from a dictionary, ignoring unknown keys."""
        return cls(**_filter_known(cls, config_dict))


@dataclass
class StorageSettings:
    """Slot pool dimensions and accounting policy."""

    slot_count: int = constants.DEFAULT_SLOT_COUNT
    slot_capacity_bytes: int = constants.DEFAULT_SLOT_CAPACITY_BYTES
    max_chunk_bytes: int = constants.DEFAULT_MAX_CHUNK_BYTES
    reconcile_on_read: bool = False

    @classmethod
    def from_dict(cls, config_dict: Optional[Mapping]) -> "StorageSettings":
        """Create settings from a dictionary, ignoring unknown keys."""
        return cls(**_filter_known(cls, config_dict))


@dataclass
class RoomSettings:
    """Room membership and activity polling settings."""

    poll_interval: float = constants.DEFAULT_ROOM_POLL_INTERVAL_SECONDS
    verify_on_join: bool = False

    @classmethod
    def from_dict(cls, config_dict: Optional[Mapping]) -> "RoomSettings":
        """Create settings from a dictionary, ignoring unknown keys."""
        return cls(**_filter_known(cls, config_dict))


class ConfigManager:
    """Manages application configuration with validation and persistence."""

    def __init__(self, user_config_dir: Optional[Path] = None):
        """Initialize the configuration manager.

        Args:
            user_config_dir: Directory holding ``app_config.json``. Defaults
                to ``~/.chainvoice``.
        """
        self.default_config_path = Path(__file__).parent / "default_config.json"
        self.user_config_dir = Path(user_config_dir) if user_config_dir else get_app_dir()
        self.user_config_path = self.user_config_dir / "app_config.json"
        self._config: Dict[str, Any] = {}
        self._default_config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from user config or default config."""
        try:
            logger.info(f"Loading default configuration from {self.default_config_path}")
            with open(self.default_config_path, "r", encoding="utf-8") as f:
                self._default_config = json.load(f)

            user_config: Dict[str, Any] = {}
            if self.user_config_path.exists():
                logger.info(f"Loading user configuration from {self.user_config_path}")
                with open(self.user_config_path, "r", encoding="utf-8") as f:
                    user_config = json.load(f)

            self._config = self._deep_merge(self._default_config, user_config)

            self._validate_config()
            logger.info("Configuration loaded and validated successfully")

        except FileNotFoundError as e:
            logger.error(f"Configuration file not found: {e}")
            raise
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in configuration file: {e}")
            raise

    def _validate_config(self) -> None:
        """Validate required configuration fields and types."""
        required_fields = {
            "version": str,
            "chain": dict,
            "audio": dict,
            "storage": dict,
            "rooms": dict,
        }

        for name, expected_type in required_fields.items():
            if name not in self._config:
                raise ValueError(f"Missing required configuration field: {name}")
            if not isinstance(self._config[name], expected_type):
                raise TypeError(
                    f"Configuration field '{name}' must be of type "
                    f"{expected_type.__name__}, got "
                    f"{type(self._config[name]).__name__}"
                )

        self._validate_chain_config()
        self._validate_audio_config()
        self._validate_storage_config()

    def _validate_chain_config(self) -> None:
        """Validate chain configuration."""
        chain_config = self._config["chain"]
        if not isinstance(chain_config.get("rpc_url"), str) or not chain_config["rpc_url"]:
            raise ValueError("Missing required field: chain.rpc_url")

        for name in ("confirm_max_attempts", "max_retries"):
            if name in chain_config:
                value = chain_config[name]
                if not isinstance(value, int) or value < 0:
                    raise ValueError(f"chain.{name} must be a non-negative integer")

        for name in ("confirm_interval", "request_timeout", "retry_base_delay"):
            if name in chain_config:
                value = chain_config[name]
                if not isinstance(value, (int, float)) or value < 0:
                    raise ValueError(f"chain.{name} must be a non-negative number")

        if "accept_unconfirmed" in chain_config:
            if not isinstance(chain_config["accept_unconfirmed"], bool):
                raise TypeError("chain.accept_unconfirmed must be a boolean")

    def _validate_audio_config(self) -> None:
        """Validate audio configuration."""
        audio_config = self._config["audio"]
        for name in ("sample_rate", "chunk_frames", "queue_size", "compression_ratio"):
            if name in audio_config:
                value = audio_config[name]
                if not isinstance(value, int) or value < 1:
                    raise ValueError(f"audio.{name} must be a positive integer")

    def _validate_storage_config(self) -> None:
        """Validate storage configuration."""
        storage_config = self._config["storage"]
        slot_count = storage_config.get("slot_count")
        # Slot index is encoded as a single byte on the wire.
        if not isinstance(slot_count, int) or not (1 <= slot_count <= 256):
            raise ValueError("storage.slot_count must be an integer between 1 and 256")

        capacity = storage_config.get("slot_capacity_bytes")
        if not isinstance(capacity, int) or capacity < 1:
            raise ValueError("storage.slot_capacity_bytes must be a positive integer")

        max_chunk = storage_config.get("max_chunk_bytes", capacity)
        if not isinstance(max_chunk, int) or not (1 <= max_chunk <= capacity):
            raise ValueError(
                "storage.max_chunk_bytes must be a positive integer no larger "
                "than storage.slot_capacity_bytes"
            )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value by key.

        Supports nested keys using dot notation (e.g., "chain.rpc_url").

        Args:
            key: Configuration key (supports dot notation)
            default: Default value if key is not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value by key.

        Supports nested keys using dot notation (e.g., "storage.slot_count").
        """
        keys = key.split(".")
        config = self._config

        for k in keys[:-1]:
            if k not in config:
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

    def save(self) -> None:
        """Save the current configuration to the user config file."""
        try:
            self.user_config_dir.mkdir(parents=True, exist_ok=True)

            self._validate_config()

            with open(self.user_config_path, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2, ensure_ascii=False)

            # Owner read/write only
            try:
                os.chmod(self.user_config_path, 0o600)
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

            logger.info(f"Configuration saved to {self.user_config_path}")

        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Error saving configuration: {e}")
            raise

    def get_all(self) -> Dict[str, Any]:
        """Return a deep copy of the entire configuration dictionary."""
        return self._clone_value(self._config)

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()

    def get_defaults(self) -> Mapping[str, Any]:
        """Return an immutable view of the default configuration."""
        return self._deep_freeze(self._default_config)

    def chain_settings(self) -> ChainSettings:
        return ChainSettings.from_dict(self._config.get("chain"))

    def audio_settings(self) -> AudioSettings:
        return AudioSettings.from_dict(self._config.get("audio"))

    def storage_settings(self) -> StorageSettings:
        return StorageSettings.from_dict(self._config.get("storage"))

    def room_settings(self) -> RoomSettings:
        return RoomSettings.from_dict(self._config.get("rooms"))

    @classmethod
    def _deep_merge(cls, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge two dictionaries without mutating inputs."""
        result: Dict[str, Any] = {}

        for key, base_value in base.items():
            if key in override:
                override_value = override[key]
                if isinstance(base_value, dict) and isinstance(override_value, dict):
                    result[key] = cls._deep_merge(base_value, override_value)
                else:
                    result[key] = cls._clone_value(override_value)
            else:
                result[key] = cls._clone_value(base_value)

        for key, override_value in override.items():
            if key not in base:
                result[key] = cls._clone_value(override_value)

        return result

    @classmethod
    def _clone_value(cls, value: Any) -> Any:
        """Return a deep copy of supported container types."""
        if isinstance(value, dict):
            return {k: cls._clone_value(v) for k, v in value.items()}
        if isinstance(value, list):
            return [cls._clone_value(v) for v in value]
        return copy.deepcopy(value)

    @classmethod
    def _deep_freeze(cls, value: Any) -> Any:
        """Create an immutable representation of nested configuration data."""
        if isinstance(value, dict):
            frozen = {k: cls._deep_freeze(v) for k, v in value.items()}
            return MappingProxyType(frozen)
        if isinstance(value, list):
            return tuple(cls._deep_freeze(v) for v in value)
        return value
