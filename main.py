#!/usr/bin/env python3
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
ChainVoice - on-chain voice messages

Headless entry point: initialize storage slots, send and play voice
messages, and inspect slot usage from the command line.
"""

import argparse
import asyncio
import os
import sys
import traceback

from config.__version__ import get_display_version
from config.app_config import ConfigManager
from core.exceptions import ChainVoiceError
from core.room.manager import VoiceRoomManager
from core.storage.allocator import SlotAllocator
from engines.audio.capture import AudioCapture
from engines.audio.clip import load_clip, save_clip
from engines.audio.playback import AudioPlayback
from engines.chain.client import ChainClient
from engines.chain.identity import LocalKeypair
from utils.error_handler import ErrorHandler
from utils.logger import set_log_level, setup_logging

# Global logger for exception hook
_logger = None

IDENTITY_FILE_NAME = "identity.key"


def exception_hook(exctype, value, tb):
    """
    Global exception handler for uncaught exceptions.

    Args:
        exctype: Exception type
        value: Exception value
        tb: Traceback object
    """
    error_msg = "".join(traceback.format_exception(exctype, value, tb))

    if _logger:
        _logger.critical(
            f"Uncaught exception: {exctype.__name__}: {value}",
            exc_info=(exctype, value, tb),
        )
    else:
        print(f"CRITICAL ERROR: {error_msg}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chainvoice", description="Store short voice messages on chain."
    )
    parser.add_argument("--version", action="version", version=get_display_version())
    parser.add_argument("--config-dir", help="Directory holding app_config.json")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init", help="Create the storage slot accounts")

    send = subparsers.add_parser("send", help="Record (or load) a clip and send it to a room")
    send.add_argument("room", help="Room id")
    send.add_argument("--create", action="store_true", help="Create the room first")
    send.add_argument("--seconds", type=float, default=5.0, help="Recording length")
    send.add_argument("--wav", help="Send this WAV file instead of recording")

    play = subparsers.add_parser("play", help="Play the voice data stored in a slot")
    play.add_argument("slot", type=int, help="Slot index")
    play.add_argument("--save", help="Also write the expanded audio to this WAV file")

    subparsers.add_parser("devices", help="List audio input devices")
    subparsers.add_parser("stats", help="Show local slot usage")
    subparsers.add_parser("balance", help="Show the identity's balance")

    airdrop = subparsers.add_parser("airdrop", help="Request test funds (max 2 SOL)")
    airdrop.add_argument("--sol", type=float, default=1.0)

    return parser


def _print_stats(allocator: SlotAllocator) -> None:
    stats = allocator.stats()
    print(
        f"Slots: {stats.slot_count}  used {stats.used_bytes}/{stats.total_capacity} bytes "
        f"({stats.utilization_percentage}%)  health: {allocator.health.value}"
    )
    for usage in stats.slots:
        print(
            f"  [{usage.index}] {usage.address}  {usage.used_bytes}/{usage.capacity_bytes} "
            f"({usage.utilization_percentage}%)"
        )


async def run_command(args, config: ConfigManager, logger) -> int:
    chain_settings = config.chain_settings()
    audio_settings = config.audio_settings()
    storage_settings = config.storage_settings()

    if args.command == "devices":
        capture = AudioCapture(sample_rate=audio_settings.sample_rate)
        try:
            for device in capture.get_input_devices():
                print(
                    f"  [{device['index']}] {device['name']} "
                    f"({device['max_input_channels']} ch)"
                )
        finally:
            capture.close()
        return 0

    identity = LocalKeypair.load_or_create(config.user_config_dir / IDENTITY_FILE_NAME)
    logger.info(f"Using identity {identity.public_key}")

    async with ChainClient(chain_settings, identity) as client:
        if args.command == "balance":
            print(f"{await client.get_balance():.9f} SOL")
            return 0
        if args.command == "airdrop":
            print(await client.request_airdrop(args.sol))
            return 0

        allocator = SlotAllocator(client, storage_settings)
        capture = AudioCapture(
            sample_rate=audio_settings.sample_rate,
            chunk_frames=audio_settings.chunk_frames,
            queue_size=audio_settings.queue_size,
            device_index=audio_settings.input_device_index,
        )
        playback = AudioPlayback(sample_rate=audio_settings.sample_rate)
        manager = VoiceRoomManager(
            client,
            allocator,
            capture,
            playback,
            audio_settings=audio_settings,
            room_settings=config.room_settings(),
        )

        try:
            if args.command == "init":
                report = await manager.initialize()
                print(f"Created {len(report.created)}/{report.attempted} storage slots")
                for index, reason in sorted(report.failed.items()):
                    print(f"  slot {index} failed: {reason}")
                _print_stats(allocator)
                return 0

            allocator.attach()

            if args.command == "stats":
                _print_stats(allocator)
                return 0

            if args.command == "send":
                if args.create:
                    await manager.create_room(args.room)
                else:
                    await manager.join_room(args.room)
                try:
                    if args.wav:
                        message = await manager.send_clip(load_clip(args.wav))
                    else:
                        print(f"Recording for {args.seconds:.1f}s...")
                        message = await manager.send_quick_message(args.seconds)
                finally:
                    await manager.leave_room()
                print(
                    f"Sent message {message.sequence_number} to slot {message.slot_index} "
                    f"({message.data_length} bytes, tx {message.signature})"
                )
                return 0

            if args.command == "play":
                clip = await manager.play_latest_message(args.slot)
                if args.save:
                    print(f"Saved to {save_clip(clip, args.save)}")
                return 0
        finally:
            manager.cleanup()

    return 1


def main(argv=None) -> int:
    """Application entry point."""
    global _logger

    args = build_parser().parse_args(argv)

    logger = setup_logging(level=args.log_level)
    _logger = logger
    sys.excepthook = exception_hook

    logger.info("=" * 60)
    logger.info(f"ChainVoice {get_display_version()} starting")
    logger.info("=" * 60)

    try:
        config = ConfigManager(args.config_dir)
        if args.log_level is None and "CHAINVOICE_ENV" not in os.environ:
            set_log_level(config.get("logging.level", "INFO"))
        return asyncio.run(run_command(args, config, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except (ChainVoiceError, ValueError, OSError) as e:
        error_info = ErrorHandler.handle_error(e, {"command": args.command})
        print(ErrorHandler.format_user_message(error_info), file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
