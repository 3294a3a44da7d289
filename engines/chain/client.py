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
JSON-RPC client for the chain.

Builds, signs and submits instructions, polls for their confirmation and
reads raw account data. Every request goes through
``AsyncRetryableHttpClient``; transport failures surface as
``NetworkError``/``ChainTimeout`` and JSON-RPC error objects as ``RpcError``.
"""

import asyncio
import base64
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, List, Optional

import httpx

from config.app_config import ChainSettings
from config.constants import JSON_RPC_VERSION, LAMPORTS_PER_SOL, MAX_AIRDROP_SOL
from core.exceptions import (
    AccountNotFound,
    ChainTimeout,
    IdentityMissing,
    NetworkError,
    RpcError,
    TransactionFailed,
)
from engines.chain.addresses import b58encode, derive_address
from engines.chain.identity import Identity
from engines.chain.instructions import ChainInstruction
from engines.chain.transaction import compile_message, serialize_transaction
from utils.http_client import AsyncRetryableHttpClient
from utils.network_error_handler import translate_transport_error

logger = logging.getLogger(__name__)

# Commitment levels in increasing strength
_COMMITMENT_ORDER = ["processed", "confirmed", "finalized"]


class ConfirmationStatus(Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TransactionHandle:
    """A submitted transaction; its fate is only known after ``confirm``."""

    signature: str
    instruction: str
    submitted_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ConfirmationOutcome:
    handle: TransactionHandle
    status: ConfirmationStatus
    attempts: int
    error: Any = None

    @property
    def is_confirmed(self) -> bool:
        return self.status is ConfirmationStatus.CONFIRMED


class ChainClient:
    """
    Async chain client.

    Args:
        settings: Endpoint, retry and confirmation settings
        identity: Signer for transactions and owner for balance queries
        http_client: Pre-built HTTP client (tests inject one backed by
            ``httpx.MockTransport``)
        sleep: Coroutine used between confirmation polls
    """

    def __init__(
        self,
        settings: Optional[ChainSettings] = None,
        identity: Optional[Identity] = None,
        http_client: Optional[AsyncRetryableHttpClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or ChainSettings()
        self.identity = identity
        self._owns_http_client = http_client is None
        self.http_client = http_client or AsyncRetryableHttpClient(
            max_retries=self.settings.max_retries,
            timeout=self.settings.request_timeout,
            base_delay=self.settings.retry_base_delay,
        )
        self._sleep = sleep
        self._request_ids = itertools.count(1)

        logger.info(f"Chain client created for {self.settings.rpc_url}")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_http_client:
            await self.http_client.close()

    # ------------------------------------------------------------------
    # JSON-RPC plumbing
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        request = {
            "jsonrpc": JSON_RPC_VERSION,
            "id": next(self._request_ids),
            "method": method,
            "params": params or [],
        }

        try:
            body = await self.http_client.post_json(self.settings.rpc_url, request)
        except httpx.HTTPError as exc:
            logger.error(f"RPC transport failure for {method}: {exc}")
            raise translate_transport_error(exc) from exc
        except ValueError as exc:
            raise NetworkError(f"Invalid JSON-RPC response for {method}") from exc

        if not isinstance(body, dict):
            raise NetworkError(f"Unexpected JSON-RPC response for {method}: {body!r}")

        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                code = error.get("code", 0)
                message = error.get("message", "")
                data = error.get("data")
            else:
                code, message, data = 0, str(error), None
            logger.warning(f"RPC {method} returned error {code}: {message}")
            raise RpcError(code, message, data)

        return body.get("result")

    def _require_identity(self) -> Identity:
        if self.identity is None:
            raise IdentityMissing()
        return self.identity

    # ------------------------------------------------------------------
    # Addresses
    # ------------------------------------------------------------------

    @staticmethod
    def derive_address(seeds: Iterable[Any], program_id: str) -> str:
        return derive_address(seeds, program_id)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_latest_blockhash(self) -> str:
        result = await self._call(
            "getLatestBlockhash", [{"commitment": self.settings.commitment}]
        )
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError) as exc:
            raise NetworkError(f"Malformed getLatestBlockhash result: {result!r}") from exc

    async def send_instruction(self, instruction: ChainInstruction) -> TransactionHandle:
        """
        Sign and submit ``instruction``; returns without waiting for confirmation.

        Raises:
            IdentityMissing: No signer is configured
            NetworkError, RpcError, ChainTimeout: Submission failed
        """
        identity = self._require_identity()
        blockhash = await self.get_latest_blockhash()

        message = compile_message(identity.public_key, blockhash, instruction)
        signature = identity.sign(message.payload)
        wire = serialize_transaction([signature], message)

        result = await self._call(
            "sendTransaction",
            [
                base64.b64encode(wire).decode("ascii"),
                {"encoding": "base64", "preflightCommitment": self.settings.commitment},
            ],
        )
        tx_signature = result if isinstance(result, str) else b58encode(signature)

        logger.info(f"Submitted {instruction.name} transaction {tx_signature}")
        return TransactionHandle(signature=tx_signature, instruction=instruction.name)

    def _meets_commitment(self, observed: Optional[str]) -> bool:
        if observed not in _COMMITMENT_ORDER:
            return False
        wanted = self.settings.commitment
        if wanted not in _COMMITMENT_ORDER:
            wanted = "confirmed"
        return _COMMITMENT_ORDER.index(observed) >= _COMMITMENT_ORDER.index(wanted)

    async def confirm(self, handle: TransactionHandle) -> ConfirmationOutcome:
        """
        Poll ``getSignatureStatuses`` until the transaction settles.

        Returns ``CONFIRMED`` once the configured commitment is reached,
        ``FAILED`` when the status carries an error, and ``UNKNOWN`` when the
        attempts run out. ``UNKNOWN`` is never reported as success.
        """
        max_attempts = max(1, self.settings.confirm_max_attempts)

        for attempt in range(1, max_attempts + 1):
            result = await self._call(
                "getSignatureStatuses",
                [[handle.signature], {"searchTransactionHistory": True}],
            )
            values = (result or {}).get("value") or [None]
            status = values[0]

            if status is not None:
                if status.get("err") is not None:
                    logger.error(
                        f"Transaction {handle.signature} failed: {status.get('err')}"
                    )
                    return ConfirmationOutcome(
                        handle, ConfirmationStatus.FAILED, attempt, status.get("err")
                    )
                if self._meets_commitment(status.get("confirmationStatus")):
                    logger.info(
                        f"Transaction {handle.signature} confirmed after {attempt} attempt(s)"
                    )
                    return ConfirmationOutcome(handle, ConfirmationStatus.CONFIRMED, attempt)

            if attempt < max_attempts:
                await self._sleep(self.settings.confirm_interval)

        logger.warning(
            f"Transaction {handle.signature} unconfirmed after {max_attempts} attempts"
        )
        return ConfirmationOutcome(handle, ConfirmationStatus.UNKNOWN, max_attempts)

    async def send_and_confirm(self, instruction: ChainInstruction) -> ConfirmationOutcome:
        """
        Submit ``instruction`` and wait for its confirmation.

        Raises:
            TransactionFailed: The transaction was observed to fail
            ChainTimeout: Confirmation stayed unknown and
                ``accept_unconfirmed`` is off
        """
        handle = await self.send_instruction(instruction)
        outcome = await self.confirm(handle)

        if outcome.status is ConfirmationStatus.FAILED:
            raise TransactionFailed(handle.signature, outcome.error)
        if outcome.status is ConfirmationStatus.UNKNOWN:
            if not self.settings.accept_unconfirmed:
                raise ChainTimeout(
                    f"Transaction {handle.signature} was not confirmed after "
                    f"{outcome.attempts} attempts"
                )
            logger.warning(
                f"Accepting unconfirmed {handle.instruction} transaction {handle.signature}"
            )
        return outcome

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def read_account(self, address: str) -> bytes:
        """
        Return the raw data of ``address``.

        Raises:
            AccountNotFound: The account does not exist
        """
        result = await self._call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.settings.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            raise AccountNotFound(address)

        data = value.get("data")
        if isinstance(data, list) and data:
            encoded = data[0]
        elif isinstance(data, str):
            encoded = data
        else:
            raise NetworkError(f"Unexpected account data encoding for {address}")

        try:
            return base64.b64decode(encoded)
        except ValueError as exc:
            raise NetworkError(f"Account data for {address} is not valid base64") from exc

    async def get_balance(self) -> float:
        """Balance of the identity's account in SOL."""
        identity = self._require_identity()
        result = await self._call(
            "getBalance", [identity.public_key, {"commitment": self.settings.commitment}]
        )
        lamports = (result or {}).get("value", 0)
        sol = lamports / LAMPORTS_PER_SOL
        logger.debug(f"Balance: {sol} SOL ({lamports} lamports)")
        return sol

    async def request_airdrop(self, sol: float = 1.0) -> str:
        """Request test funds for the identity; the amount is capped at 2 SOL."""
        identity = self._require_identity()
        clamped = min(max(sol, 0.0), MAX_AIRDROP_SOL)
        lamports = int(clamped * LAMPORTS_PER_SOL)

        logger.info(f"Requesting airdrop of {clamped} SOL ({lamports} lamports)")
        signature = await self._call("requestAirdrop", [identity.public_key, lamports])
        return str(signature)
