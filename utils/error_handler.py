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
统一错误处理器

将各种异常转换为用户友好的错误消息和建议。
"""

import logging
from typing import Any, Dict, Optional

from core.exceptions import (
    AccountNotFound,
    AllocationError,
    ChainTimeout,
    ChainVoiceError,
    ChunkTooLarge,
    CodecError,
    DeviceError,
    ErrorCategory,
    IdentityMissing,
    NetworkError,
    NoSlotsCreated,
    NoSpace,
    RpcError,
    StateError,
    TransactionFailed,
    UnsupportedSampleRate,
)

logger = logging.getLogger(__name__)


class ErrorHandler:
    """统一错误处理器"""

    @staticmethod
    def handle_error(error: Exception, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        统一错误处理

        Args:
            error: 异常对象
            context: 错误上下文信息（可选）

        Returns:
            包含错误信息的字典:
            {
                "user_message": "用户友好的错误消息",
                "technical_details": "技术细节（用于日志）",
                "suggested_action": "建议的解决方案",
                "retry_possible": True/False,
                "category": "错误类别",
                "kind": "机器可判定的错误种类"
            }
        """
        context = context or {}

        logger.error(
            f"Error occurred: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={"context": context},
        )

        if isinstance(error, ChainVoiceError):
            return {
                "user_message": str(error),
                "technical_details": f"{type(error).__name__}: {error}",
                "suggested_action": ErrorHandler._get_suggested_action(error),
                "retry_possible": ErrorHandler._is_retryable_error(error),
                "category": error.category.value,
                "kind": error.kind,
            }

        if isinstance(error, TimeoutError):
            return {
                "user_message": "Operation timed out",
                "technical_details": str(error),
                "suggested_action": "Check the network connection and try again",
                "retry_possible": True,
                "category": ErrorCategory.CHAIN.value,
                "kind": ChainTimeout.kind,
            }

        if isinstance(error, ValueError):
            return {
                "user_message": "Invalid input value",
                "technical_details": str(error),
                "suggested_action": "Check the input and try again",
                "retry_possible": False,
                "category": ErrorCategory.UNKNOWN.value,
                "kind": "ValueError",
            }

        return {
            "user_message": "An unexpected error occurred",
            "technical_details": f"{type(error).__name__}: {str(error)}",
            "suggested_action": "See the log file for details",
            "retry_possible": False,
            "category": ErrorCategory.UNKNOWN.value,
            "kind": "Unknown",
        }

    @staticmethod
    def format_user_message(error_info: Dict[str, Any], include_action: bool = True) -> str:
        """
        格式化用户错误消息

        Args:
            error_info: handle_error 返回的错误信息字典
            include_action: 是否包含建议操作
        """
        message = error_info["user_message"]

        if include_action and error_info.get("suggested_action"):
            message += f"\n\n{error_info['suggested_action']}"

        return message

    @staticmethod
    def _get_suggested_action(error: ChainVoiceError) -> str:
        if isinstance(error, DeviceError):
            return "Check that a microphone is connected and not in use by another application"
        elif isinstance(error, UnsupportedSampleRate):
            return f"Resample the clip to {error.expected_hz} Hz before sending"
        elif isinstance(error, CodecError):
            return "Use a compression ratio of 1 or more"
        elif isinstance(error, NoSlotsCreated):
            return "Check the RPC endpoint and account balance, then initialize storage again"
        elif isinstance(error, (NoSpace, ChunkTooLarge)):
            return "Record a shorter message or reset storage slots"
        elif isinstance(error, AllocationError):
            return "Re-initialize storage to rebuild the slot table"
        elif isinstance(error, IdentityMissing):
            return "Create or load an identity before sending"
        elif isinstance(error, (NetworkError, ChainTimeout)):
            return "Check the network connection and try again"
        elif isinstance(error, AccountNotFound):
            return "The account has not been created yet"
        elif isinstance(error, (RpcError, TransactionFailed)):
            return "The chain rejected the request; check the balance and inputs"
        elif isinstance(error, StateError):
            return "Wait for the current operation to finish"
        return "See the log file for details"

    @staticmethod
    def _is_retryable_error(error: ChainVoiceError) -> bool:
        retryable_types = (NetworkError, ChainTimeout, DeviceError)
        return isinstance(error, retryable_types)

    @staticmethod
    def is_retryable(error_info: Dict[str, Any]) -> bool:
        """判断错误是否可重试"""
        return error_info.get("retry_possible", False)
