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
Signing identities.

``Identity`` is the interface the chain client signs transactions with. Only a
local development keypair is provided; production key custody belongs to an
external wallet implementing the same interface.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from engines.chain.addresses import b58encode

logger = logging.getLogger(__name__)


class Identity(ABC):
    """A public key plus the ability to sign messages with its private half."""

    @property
    @abstractmethod
    def public_key_bytes(self) -> bytes:
        """Raw 32-byte public key."""

    @abstractmethod
    def sign(self, message: bytes) -> bytes:
        """Return a 64-byte signature over ``message``."""

    @property
    def public_key(self) -> str:
        """Base58 text form of the public key."""
        return b58encode(self.public_key_bytes)


class LocalKeypair(Identity):
    """Ed25519 keypair held in process memory."""

    def __init__(self, private_key: Optional[Ed25519PrivateKey] = None):
        self._private_key = private_key or Ed25519PrivateKey.generate()
        self._public_key_bytes = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    @classmethod
    def generate(cls) -> "LocalKeypair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "LocalKeypair":
        """Build a keypair from a 32-byte private seed."""
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    @classmethod
    def load_or_create(cls, path: Union[str, Path]) -> "LocalKeypair":
        """
        Load the keypair stored at ``path``, creating it on first use.

        The file holds the raw 32-byte private seed and is restricted to the
        owner.
        """
        key_path = Path(path).expanduser()
        if key_path.exists():
            keypair = cls.from_seed(key_path.read_bytes())
            logger.info(f"Loaded local identity {keypair.public_key}")
            return keypair

        keypair = cls.generate()
        key_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.write_bytes(keypair.private_seed())
        try:
            os.chmod(key_path, 0o600)
        except OSError as exc:
            logger.warning(f"Could not restrict permissions on {key_path}: {exc}")
        logger.info(f"Created local identity {keypair.public_key}")
        return keypair

    def private_seed(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    @property
    def public_key_bytes(self) -> bytes:
        return self._public_key_bytes

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def __repr__(self) -> str:
        return f"LocalKeypair({self.public_key})"
