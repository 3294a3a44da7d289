"""
网络错误处理器

将 httpx 传输层异常统一转换为 ChainVoice 的链错误。
"""

import httpx

from core.exceptions import ChainError, ChainTimeout, NetworkError


def get_network_error_message(error: Exception) -> tuple[str, str]:
    """
    获取网络错误的用户友好消息和建议

    Args:
        error: 网络异常对象

    Returns:
        (错误消息, 建议操作) 元组
    """
    # 子类必须在父类之前判断
    if isinstance(error, httpx.ConnectTimeout):
        message = "Timed out while connecting to the RPC endpoint"
        suggestion = "Check the network connection and the configured rpc_url"

    elif isinstance(error, httpx.ReadTimeout):
        message = "The RPC endpoint responded too slowly"
        suggestion = "Retry later or raise chain.request_timeout"

    elif isinstance(error, httpx.TimeoutException):
        message = "The RPC request timed out"
        suggestion = "Retry later"

    elif isinstance(error, httpx.ConnectError):
        message = "Could not connect to the RPC endpoint"
        suggestion = "Check the network connection and the configured rpc_url"

    elif isinstance(error, httpx.NetworkError):
        message = "Network error while talking to the RPC endpoint"
        suggestion = "Check the network connection"

    elif isinstance(error, httpx.RemoteProtocolError):
        message = "The RPC endpoint returned an invalid response"
        suggestion = "Retry later"

    elif isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code

        if status_code == 429:
            message = "The RPC endpoint is rate limiting requests"
            retry_after = error.response.headers.get("Retry-After")
            if retry_after:
                try:
                    suggestion = f"Retry in {int(retry_after)} seconds"
                except ValueError:
                    suggestion = "Retry later"
            else:
                suggestion = "Retry later or use a different RPC endpoint"
        elif status_code >= 500:
            message = f"RPC server error ({status_code})"
            suggestion = "The endpoint is temporarily unavailable, retry later"
        else:
            message = f"HTTP error ({status_code})"
            suggestion = "Check the configured rpc_url"

    else:
        message = f"Network error: {type(error).__name__}"
        suggestion = "Check the network connection"

    return message, suggestion


def translate_transport_error(error: Exception) -> ChainError:
    """
    将 httpx 异常转换为链错误

    超时映射为 ChainTimeout，其他传输错误映射为 NetworkError。
    """
    message, _ = get_network_error_message(error)
    detail = f"{message}: {error}" if str(error) else message

    if isinstance(error, httpx.TimeoutException):
        return ChainTimeout(detail)
    return NetworkError(detail)
