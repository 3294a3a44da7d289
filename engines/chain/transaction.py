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
Transaction message serialization.

Builds a single-instruction legacy message (header, ordered account keys,
recent blockhash, compiled instruction) and wraps it with its signatures.
Account keys are ordered writable signers, read-only signers, writable
non-signers, then read-only non-signers; the fee payer is always first.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

from engines.chain.addresses import b58decode
from engines.chain.instructions import AccountMeta, ChainInstruction

PUBKEY_LENGTH = 32


def encode_compact_u16(value: int) -> bytes:
    """Variable-length little-endian encoding, 7 bits per byte."""
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"compact-u16 out of range: {value}")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _pubkey_bytes(address: str) -> bytes:
    raw = b58decode(address)
    if len(raw) > PUBKEY_LENGTH:
        raise ValueError(f"Address does not decode to {PUBKEY_LENGTH} bytes: {address}")
    return raw.rjust(PUBKEY_LENGTH, b"\x00")


@dataclass(frozen=True)
class CompiledMessage:
    account_keys: List[str]
    num_required_signatures: int
    num_readonly_signed: int
    num_readonly_unsigned: int
    payload: bytes


def _merge_accounts(fee_payer: str, instruction: ChainInstruction) -> List[AccountMeta]:
    merged: Dict[str, AccountMeta] = {
        fee_payer: AccountMeta(fee_payer, is_signer=True, is_writable=True)
    }
    for meta in list(instruction.accounts) + [AccountMeta(instruction.program_id)]:
        existing = merged.get(meta.pubkey)
        if existing is None:
            merged[meta.pubkey] = meta
        else:
            merged[meta.pubkey] = AccountMeta(
                meta.pubkey,
                is_signer=existing.is_signer or meta.is_signer,
                is_writable=existing.is_writable or meta.is_writable,
            )

    payer = merged.pop(fee_payer)
    rest = list(merged.values())

    def rank(meta: AccountMeta) -> int:
        if meta.is_signer:
            return 0 if meta.is_writable else 1
        return 2 if meta.is_writable else 3

    # sorted() is stable, so accounts keep instruction order within a rank
    return [payer] + sorted(rest, key=rank)


def compile_message(fee_payer: str, recent_blockhash: str, instruction: ChainInstruction) -> CompiledMessage:
    """Compile ``instruction`` into a signable message paid for by ``fee_payer``."""
    accounts = _merge_accounts(fee_payer, instruction)
    keys = [meta.pubkey for meta in accounts]
    index_of = {key: position for position, key in enumerate(keys)}

    num_signed = sum(1 for meta in accounts if meta.is_signer)
    num_readonly_signed = sum(1 for meta in accounts if meta.is_signer and not meta.is_writable)
    num_readonly_unsigned = sum(
        1 for meta in accounts if not meta.is_signer and not meta.is_writable
    )

    data = instruction.data
    account_indices = bytes(index_of[meta.pubkey] for meta in instruction.accounts)

    payload = bytearray()
    payload += bytes([num_signed, num_readonly_signed, num_readonly_unsigned])
    payload += encode_compact_u16(len(keys))
    for key in keys:
        payload += _pubkey_bytes(key)
    payload += _pubkey_bytes(recent_blockhash)
    payload += encode_compact_u16(1)
    payload.append(index_of[instruction.program_id])
    payload += encode_compact_u16(len(account_indices)) + account_indices
    payload += encode_compact_u16(len(data)) + data

    return CompiledMessage(
        account_keys=keys,
        num_required_signatures=num_signed,
        num_readonly_signed=num_readonly_signed,
        num_readonly_unsigned=num_readonly_unsigned,
        payload=bytes(payload),
    )


def serialize_transaction(signatures: Sequence[bytes], message: CompiledMessage) -> bytes:
    """Wire form: ``compact(len(signatures)) | signatures | message``."""
    if len(signatures) != message.num_required_signatures:
        raise ValueError(
            f"Expected {message.num_required_signatures} signatures, got {len(signatures)}"
        )
    return encode_compact_u16(len(signatures)) + b"".join(signatures) + message.payload
