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
Storage slot account layout.

A slot account starts with a fixed 54-byte metadata prefix::

    discriminator   8 bytes
    slot_index      u8
    owner           32 bytes
    created_at      i64
    data_length     u32
    is_active       u8

followed by the stored chunk bytes. Integers are little-endian.
"""

import struct
from dataclasses import dataclass

from engines.chain.addresses import b58encode

_PREFIX = struct.Struct("<8sB32sqIB")

ACCOUNT_METADATA_SIZE = _PREFIX.size


@dataclass(frozen=True)
class SlotAccountData:
    discriminator: bytes
    slot_index: int
    owner: str
    created_at: int
    data_length: int
    is_active: bool
    payload: bytes


def parse_slot_account(raw: bytes) -> SlotAccountData:
    """
    Split raw slot account data into metadata and chunk payload.

    The payload is truncated to ``data_length`` when that field fits inside
    the account; otherwise everything after the prefix is returned.

    Raises:
        ValueError: ``raw`` is shorter than the metadata prefix
    """
    if len(raw) < ACCOUNT_METADATA_SIZE:
        raise ValueError(
            f"Slot account data is {len(raw)} bytes, shorter than the "
            f"{ACCOUNT_METADATA_SIZE}-byte metadata prefix"
        )

    discriminator, slot_index, owner, created_at, data_length, active = _PREFIX.unpack_from(raw)
    body = bytes(raw[ACCOUNT_METADATA_SIZE:])
    if data_length <= len(body):
        body = body[:data_length]

    return SlotAccountData(
        discriminator=discriminator,
        slot_index=slot_index,
        owner=b58encode(owner),
        created_at=created_at,
        data_length=data_length,
        is_active=bool(active),
        payload=body,
    )


def slot_payload(raw: bytes) -> bytes:
    """Chunk bytes stored in a slot account; empty when there is no payload."""
    if len(raw) < ACCOUNT_METADATA_SIZE:
        return b""
    return parse_slot_account(raw).payload
