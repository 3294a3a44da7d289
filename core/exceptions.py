# SPDX-License-Identifier: Apache-2.0
"""
Exceptions for ChainVoice.

Every error carries a human-readable message, a machine-checkable ``kind``
and an :class:`ErrorCategory` so that callers can branch on the failure
without parsing text.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(Enum):
    """Top-level error families."""

    DEVICE = "device"
    CODEC = "codec"
    ALLOCATION = "allocation"
    CHAIN = "chain"
    STATE = "state"
    UNKNOWN = "unknown"


class ChainVoiceError(Exception):
    """Base exception for ChainVoice errors."""

    category = ErrorCategory.UNKNOWN
    kind = "Unknown"

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


# ---------------------------------------------------------------------------
# Capture device
# ---------------------------------------------------------------------------


class DeviceError(ChainVoiceError):
    """Capture or playback device failure."""

    category = ErrorCategory.DEVICE
    kind = "DeviceError"


class DeviceUnavailable(DeviceError):
    """Raised when the audio device cannot be opened."""

    kind = "DeviceUnavailable"


class EmptyRecording(DeviceError):
    """Raised when a recording session produced no audio."""

    kind = "EmptyRecording"

    def __init__(self, message: str = "No voice data recorded"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class CodecError(ChainVoiceError):
    """Compression or expansion failure."""

    category = ErrorCategory.CODEC
    kind = "CodecError"


class InvalidRatio(CodecError):
    """Raised for a compression ratio that is not a positive integer."""

    kind = "InvalidRatio"

    def __init__(self, ratio: Any):
        super().__init__(f"Compression ratio must be a positive integer, got {ratio!r}")
        self.ratio = ratio


class UnsupportedSampleRate(CodecError):
    """Raised for a clip whose sample rate differs from the configured one."""

    kind = "UnsupportedSampleRate"

    def __init__(self, sample_rate_hz: int, expected_hz: int):
        super().__init__(
            f"Clip sample rate {sample_rate_hz} Hz does not match the configured {expected_hz} Hz"
        )
        self.sample_rate_hz = sample_rate_hz
        self.expected_hz = expected_hz


# ---------------------------------------------------------------------------
# Slot allocation
# ---------------------------------------------------------------------------


class AllocationError(ChainVoiceError):
    """Storage slot allocation failure."""

    category = ErrorCategory.ALLOCATION
    kind = "AllocationError"


class NoSpace(AllocationError):
    """Raised when no active slot can hold a chunk of the requested size."""

    kind = "NoSpace"

    def __init__(self, size: int, largest_free: int = 0):
        super().__init__(
            f"No storage slot has room for {size} bytes (largest free: {largest_free} bytes)"
        )
        self.size = size
        self.largest_free = largest_free


class ChunkTooLarge(AllocationError):
    """Raised when a compressed chunk exceeds the per-chunk size limit."""

    kind = "ChunkTooLarge"

    def __init__(self, size: int, limit: int):
        super().__init__(f"Voice data too large: {size} bytes (limit {limit} bytes)")
        self.size = size
        self.limit = limit


class SlotNotFound(AllocationError):
    """Raised when an operation names a slot index that does not exist."""

    kind = "SlotNotFound"

    def __init__(self, slot_index: int):
        super().__init__(f"Storage slot not found: {slot_index}")
        self.slot_index = slot_index


class Overflow(AllocationError):
    """Raised when committing usage would exceed a slot's capacity."""

    kind = "Overflow"

    def __init__(self, slot_index: int, size: int, free: int):
        super().__init__(
            f"Committing {size} bytes to slot {slot_index} exceeds its free space ({free} bytes)"
        )
        self.slot_index = slot_index
        self.size = size
        self.free = free


class NoSlotsCreated(AllocationError):
    """Raised when initialization could not create a single slot."""

    kind = "NoSlotsCreated"

    def __init__(self, attempted: int, last_error: Optional[BaseException] = None):
        message = f"None of the {attempted} storage slots could be created"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempted = attempted
        self.last_error = last_error


# ---------------------------------------------------------------------------
# Chain / RPC
# ---------------------------------------------------------------------------


class ChainError(ChainVoiceError):
    """Failure talking to the chain RPC endpoint."""

    category = ErrorCategory.CHAIN
    kind = "ChainError"


class NetworkError(ChainError):
    """Raised when the RPC endpoint cannot be reached."""

    kind = "NetworkError"


class RpcError(ChainError):
    """Raised when the RPC endpoint returns a JSON-RPC error object."""

    kind = "RpcError"

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.rpc_message = message
        self.data = data


class ChainTimeout(ChainError):
    """Raised when a request or a confirmation did not finish in time."""

    kind = "Timeout"


class AccountNotFound(ChainError):
    """Raised when an on-chain account does not exist."""

    kind = "NotFound"

    def __init__(self, address: str):
        super().__init__(f"Account not found: {address}")
        self.address = address


class TransactionFailed(ChainError):
    """Raised when a submitted transaction was observed to fail."""

    kind = "TransactionFailed"

    def __init__(self, signature: str, error: Any = None):
        super().__init__(f"Transaction {signature} failed: {error}")
        self.signature = signature
        self.error = error


class IdentityMissing(ChainError):
    """Raised when an operation needs an identity and none is configured."""

    kind = "IdentityMissing"

    def __init__(self, message: str = "No identity configured for signing requests"):
        super().__init__(message)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class StateError(ChainVoiceError):
    """Operation not valid in the current state."""

    category = ErrorCategory.STATE
    kind = "InvalidTransition"


class InvalidTransition(StateError):
    """Raised for a generic illegal state transition."""

    kind = "InvalidTransition"


class AlreadyActive(StateError):
    """Raised when starting capture while it is already running."""

    kind = "AlreadyActive"

    def __init__(self, message: str = "Audio capture is already running"):
        super().__init__(message)


class NotActive(StateError):
    """Raised when stopping capture that is not running."""

    kind = "NotActive"

    def __init__(self, message: str = "Audio capture is not running"):
        super().__init__(message)


class AlreadyTransmitting(StateError):
    kind = "AlreadyTransmitting"

    def __init__(self, message: str = "A transmission is already in progress"):
        super().__init__(message)


class NotTransmitting(StateError):
    kind = "NotTransmitting"

    def __init__(self, message: str = "Not currently transmitting"):
        super().__init__(message)


class NotInRoom(StateError):
    kind = "NotInRoom"

    def __init__(self, message: str = "Not in any room"):
        super().__init__(message)


class NoMessages(StateError):
    kind = "NoMessages"

    def __init__(self, message: str = "No voice messages available to play"):
        super().__init__(message)


class OperationCancelled(StateError):
    """Raised to the caller of an operation aborted by an emergency stop."""

    kind = "Cancelled"
