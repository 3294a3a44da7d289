"""
Chain engine package

Provides instruction encoding, address derivation, signing identities and the
JSON-RPC client used to store voice chunks on chain.
"""

from engines.chain.client import (
    ChainClient,
    ConfirmationOutcome,
    ConfirmationStatus,
    TransactionHandle,
)
from engines.chain.identity import Identity, LocalKeypair
from engines.chain.instructions import (
    AccountMeta,
    ChainInstruction,
    CreateRoom,
    CreateSlot,
    SendChunk,
)

__all__ = [
    'ChainClient',
    'ConfirmationOutcome',
    'ConfirmationStatus',
    'TransactionHandle',
    'Identity',
    'LocalKeypair',
    'AccountMeta',
    'ChainInstruction',
    'CreateRoom',
    'CreateSlot',
    'SendChunk',
]
