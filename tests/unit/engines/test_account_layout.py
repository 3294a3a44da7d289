# SPDX-License-Identifier: Apache-2.0
import struct

import pytest

from engines.chain.account_layout import ACCOUNT_METADATA_SIZE, parse_slot_account, slot_payload
from engines.chain.addresses import b58encode


def _account(payload: bytes, data_length=None, index=2, active=1, padding=b""):
    owner = b"\x11" * 32
    length = len(payload) if data_length is None else data_length
    prefix = struct.pack("<8sB32sqIB", b"DISCRIMI", index, owner, 1_700_000_000, length, active)
    return prefix + payload + padding


def test_metadata_prefix_is_54_bytes():
    assert ACCOUNT_METADATA_SIZE == 54
    assert len(_account(b"")) == 54


def test_parse_fields():
    data = parse_slot_account(_account(b"voice", index=9))

    assert data.slot_index == 9
    assert data.owner == b58encode(b"\x11" * 32)
    assert data.created_at == 1_700_000_000
    assert data.data_length == 5
    assert data.is_active is True
    assert data.payload == b"voice"


def test_payload_truncated_to_data_length():
    raw = _account(b"voice", padding=b"\x00" * 100)
    assert slot_payload(raw) == b"voice"


def test_oversized_length_returns_whole_remainder():
    raw = _account(b"abc", data_length=1000)
    assert slot_payload(raw) == b"abc"


def test_short_account_has_no_payload():
    assert slot_payload(b"\x00" * 10) == b""
    with pytest.raises(ValueError):
        parse_slot_account(b"\x00" * 53)
