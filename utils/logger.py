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
日志系统配置

提供集中式日志设置，支持文件轮转和控制台输出。
"""

import logging
import os
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from config.app_config import get_app_dir
from config.constants import LOG_FILE_BACKUP_COUNT, LOG_FILE_MAX_BYTES

APP_LOGGER_NAME = "chainvoice"

# 日志级别映射
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class SensitiveDataFilter(logging.Filter):
    """
    过滤敏感数据的日志过滤器

    防止私钥、Token 等敏感信息被记录到日志中。
    """

    SENSITIVE_KEYWORDS = [
        "secret",
        "secret_key",
        "private_key",
        "seed_phrase",
        "api_key",
        "token",
        "password",
        "authorization",
        "bearer",
    ]

    _PATTERNS = [
        (r"((?:secret|private)[_-]?key\s*[=:]\s*)[^\s,\)]+", r"\1***"),
        (r"(seed[_-]?phrase\s*[=:]\s*)[^\s,\)]+", r"\1***"),
        (r"(api[_-]?key\s*[=:]\s*)[^\s,\)]+", r"\1***"),
        (r"(token\s*[=:]\s*)[^\s,\)]+", r"\1***"),
        (r"(password\s*[=:]\s*)[^\s,\)]+", r"\1***"),
        (r"(bearer\s+)[^\s,\)]+", r"\1***"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """
        过滤日志记录

        Args:
            record: 日志记录对象

        Returns:
            是否允许记录该日志
        """
        message = record.getMessage()
        lowered = message.lower()

        for keyword in self.SENSITIVE_KEYWORDS:
            if keyword in lowered:
                # 先格式化参数，再遮蔽，避免敏感值藏在 args 中
                record.msg = self._mask_sensitive_data(message)
                record.args = ()
                break

        return True

    def _mask_sensitive_data(self, message: str) -> str:
        """遮蔽敏感数据"""
        masked = message
        for pattern, replacement in self._PATTERNS:
            masked = re.sub(pattern, replacement, masked, flags=re.IGNORECASE)
        return masked


def setup_logging(
    log_dir: Optional[str] = None, level: Optional[str] = None, console_output: bool = True
) -> logging.Logger:
    """
    设置应用日志系统

    在根日志器上配置文件轮转处理器和控制台处理器，使各模块通过
    ``logging.getLogger(__name__)`` 创建的日志器都能输出。

    Args:
        log_dir: 日志文件目录，默认为 ~/.chainvoice/logs
        level: 日志级别，默认根据环境变量 CHAINVOICE_ENV 决定
               (development: DEBUG, production: INFO)
        console_output: 是否输出到控制台，默认 True

    Returns:
        应用日志器
    """
    if log_dir is None:
        log_path = get_app_dir() / "logs"
    else:
        log_path = Path(log_dir)

    log_path.mkdir(parents=True, exist_ok=True)

    if level is None:
        env = os.environ.get("CHAINVOICE_ENV", "production").lower()
        level = "DEBUG" if env == "development" else "INFO"

    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # 由处理器控制级别

    # 清除之前安装的处理器，避免重复
    for handler in list(root_logger.handlers):
        if getattr(handler, "_chainvoice_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    sensitive_filter = SensitiveDataFilter()

    # 文件处理器 - 详细日志，带轮转
    log_file = log_path / "chainvoice.log"
    file_handler = RotatingFileHandler(
        log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
    )
    file_handler.addFilter(sensitive_filter)
    file_handler._chainvoice_handler = True
    root_logger.addHandler(file_handler)

    # 控制台处理器 - 简化日志
    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(max(log_level, logging.INFO))
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        console_handler.addFilter(sensitive_filter)
        console_handler._chainvoice_handler = True
        root_logger.addHandler(console_handler)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.info("Logging initialized")
    app_logger.debug(f"Log file: {log_file}")
    app_logger.debug(f"Log level: {level}")

    return app_logger


def get_logger(name: str) -> logging.Logger:
    """
    获取特定模块的日志器实例

    Args:
        name: 模块名称（通常使用 __name__）
    """
    if name.startswith(f"{APP_LOGGER_NAME}."):
        return logging.getLogger(name)

    return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")


def set_log_level(level: str):
    """
    动态设置文件日志级别

    Args:
        level: 日志级别 (DEBUG/INFO/WARNING/ERROR/CRITICAL)
    """
    log_level = LOG_LEVELS.get(level.upper(), logging.INFO)

    for handler in logging.getLogger().handlers:
        if isinstance(handler, RotatingFileHandler):
            handler.setLevel(log_level)

    logging.getLogger(APP_LOGGER_NAME).info(f"Log level changed to: {level}")
