# SPDX-License-Identifier: Apache-2.0
import pytest

from config.constants import STORAGE_MANAGER_PROGRAM_ID, SYSTEM_PROGRAM_ID
from engines.chain.addresses import b58encode
from engines.chain.identity import LocalKeypair
from engines.chain.instructions import build_create_slot, build_send_chunk
from engines.chain.transaction import (
    compile_message,
    encode_compact_u16,
    serialize_transaction,
)

BLOCKHASH = b58encode(b"\x05" * 32)


@pytest.mark.parametrize(
    ("value", "encoded"),
    [(0, b"\x00"), (0x7F, b"\x7f"), (0x80, b"\x80\x01"), (0x3FFF, b"\xff\x7f"), (0x4000, b"\x80\x80\x01")],
)
def test_compact_u16(value, encoded):
    assert encode_compact_u16(value) == encoded


def test_fee_payer_first_and_merged_with_authority(identity):
    instruction = build_create_slot(identity.public_key_bytes, 0)
    message = compile_message(identity.public_key, BLOCKHASH, instruction)

    assert message.account_keys[0] == identity.public_key
    assert message.account_keys.count(identity.public_key) == 1
    assert message.num_required_signatures == 1
    assert message.num_readonly_signed == 0
    # system program and the storage program are read-only
    assert message.num_readonly_unsigned == 2
    assert message.account_keys[-2:] == [SYSTEM_PROGRAM_ID, STORAGE_MANAGER_PROGRAM_ID]


def test_message_layout(identity):
    instruction = build_send_chunk(identity.public_key_bytes, "lobby", b"\x09" * 4, 1, 5)
    message = compile_message(identity.public_key, BLOCKHASH, instruction)
    payload = message.payload
    key_count = len(message.account_keys)

    assert payload[:3] == bytes([1, 0, 2])
    assert payload[3] == key_count
    blockhash_offset = 4 + 32 * key_count
    assert payload[blockhash_offset:blockhash_offset + 32] == b"\x05" * 32
    assert payload.endswith(instruction.data)


def test_serialize_transaction_checks_signature_count(identity):
    message = compile_message(identity.public_key, BLOCKHASH, build_create_slot(identity.public_key_bytes, 0))
    signature = identity.sign(message.payload)

    wire = serialize_transaction([signature], message)
    assert wire[0] == 1
    assert wire[1:65] == signature
    assert wire[65:] == message.payload

    with pytest.raises(ValueError):
        serialize_transaction([], message)


def test_signature_verifies(identity):
    message = compile_message(identity.public_key, BLOCKHASH, build_create_slot(identity.public_key_bytes, 3))
    signature = identity.sign(message.payload)
    # raises InvalidSignature on mismatch
    identity._private_key.public_key().verify(signature, message.payload)


def test_local_keypair_seed_round_trip(tmp_path):
    key_file = tmp_path / "identity.key"
    created = LocalKeypair.load_or_create(key_file)
    loaded = LocalKeypair.load_or_create(key_file)

    assert created.public_key == loaded.public_key
    assert len(created.public_key_bytes) == 32
    assert key_file.read_bytes() == created.private_seed()


def test_local_keypair_rejects_bad_seed():
    with pytest.raises(ValueError):
        LocalKeypair.from_seed(b"short")
