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
Deterministic account address derivation.

Addresses are ``base58(sha256(seed_1 + ... + seed_n + program_id))`` where the
program id contributes its base58 text encoded as UTF-8. The function is pure:
identical seeds and program id always yield the identical address.
"""

import hashlib
from typing import Iterable, Union

from config.constants import MESSAGE_SEED, ROOM_SEED, SLOT_SEED

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(BASE58_ALPHABET)}

Seed = Union[bytes, bytearray, str]


def b58encode(data: bytes) -> str:
    """Encode ``data`` with the Bitcoin base58 alphabet."""
    number = int.from_bytes(data, "big")
    encoded = []
    while number > 0:
        number, remainder = divmod(number, 58)
        encoded.append(BASE58_ALPHABET[remainder])

    # Leading zero bytes map to leading '1's
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading_zeros + "".join(reversed(encoded))


def b58decode(text: str) -> bytes:
    """Decode a base58 string; raises ``ValueError`` on foreign characters."""
    number = 0
    for char in text:
        try:
            number = number * 58 + _BASE58_INDEX[char]
        except KeyError:
            raise ValueError(f"Invalid base58 character: {char!r}") from None

    body = number.to_bytes((number.bit_length() + 7) // 8, "big") if number else b""
    leading_ones = len(text) - len(text.lstrip("1"))
    return b"\x00" * leading_ones + body


def _seed_bytes(seed: Seed) -> bytes:
    if isinstance(seed, str):
        return seed.encode("utf-8")
    return bytes(seed)


def derive_address(seeds: Iterable[Seed], program_id: str) -> str:
    """Derive the address owned by ``program_id`` for the given seeds."""
    digest = hashlib.sha256()
    for seed in seeds:
        digest.update(_seed_bytes(seed))
    digest.update(program_id.encode("utf-8"))
    return b58encode(digest.digest())


def slot_address(authority_pubkey: bytes, index: int, storage_program_id: str) -> str:
    """Address of storage slot ``index`` owned by ``authority_pubkey``."""
    return derive_address([SLOT_SEED, authority_pubkey, bytes([index])], storage_program_id)


def room_address(room_id: str, voice_chat_program_id: str) -> str:
    return derive_address([ROOM_SEED, room_id], voice_chat_program_id)


def message_address(authority_pubkey: bytes, sequence_number: int, voice_chat_program_id: str) -> str:
    return derive_address(
        [MESSAGE_SEED, authority_pubkey, str(sequence_number)],
        voice_chat_program_id,
    )
