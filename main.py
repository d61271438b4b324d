#!/usr/bin/env python3
"""
Kanji Quiz Bot entry point.

Usage:
    python main.py [--config PATH]                      Run the bot
    python main.py validate [quiz ...] [--fix]          Check quiz files for duplicate questions

The bot token is read from DISCORD_BOT_TOKEN, or from bot.token in the config
file when the variable is unset. With --fix, validate writes a merged
<file>.fix copy next to every quiz it checked.
"""

import argparse
import asyncio
import sys
import os
import json
import logging
from pathlib import Path

DEFAULT_CONFIG = "config.json"
TOKEN_PLACEHOLDER = "YOUR_DISCORD_BOT_TOKEN_HERE"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def load_config(path=DEFAULT_CONFIG):
    """Read the JSON config file, exiting with a message if it is unusable."""
    config_path = Path(path)
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = json.load(f)
    except FileNotFoundError:
        print(f"❌ Error: {config_path} not found!")
        print(f"Create it from the {DEFAULT_CONFIG} in the repository and set your bot token.")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"❌ Error: {config_path} is not valid JSON: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error: could not read {config_path}: {e}")
        sys.exit(1)

    if not isinstance(config, dict):
        print(f"❌ Error: {config_path} must contain a JSON object")
        sys.exit(1)
    return config


def get_bot_token(config):
    """DISCORD_BOT_TOKEN wins over bot.token in the config file."""
    token = os.getenv('DISCORD_BOT_TOKEN') or config.get('bot', {}).get('token')
    if token and token != TOKEN_PLACEHOLDER:
        return token

    print("❌ Error: no Discord bot token configured.")
    print("Set DISCORD_BOT_TOKEN, or put the token in bot.token of the config file.")
    sys.exit(1)


def setup_logging_from_config(config):
    """Log to the console and to <log_directory>/bot.log."""
    settings = config.get('logging', {})
    level_name = str(settings.get('level', 'INFO')).upper()
    level = getattr(logging, level_name, logging.INFO)

    log_dir = Path(settings.get('log_directory', './logs/'))
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_dir / "bot.log", encoding='utf-8'),
        ],
    )

    # discord.py logs every gateway event at INFO
    for name in ('discord', 'discord.http', 'discord.gateway'):
        logging.getLogger(name).setLevel(logging.WARNING)


def validate_quizzes(config, quiz_ids, generate_fix):
    """Report duplicate questions in quiz files. Returns a process exit code."""
    from kanjiquiz.config_manager import ConfigManager
    from kanjiquiz.data_manager import DeckSource

    config_manager = ConfigManager()
    config_manager.apply_config(config)
    source = DeckSource(config_manager.quiz_directory, config_manager.quiz_list_path)
    if not source.reload():
        print("❌ Error: quiz list could not be loaded")
        return 1

    results = source.validate_quizzes(quiz_ids or source.list_quiz_ids(), generate_fix)
    exit_code = 0
    for quiz_id, deck in results.items():
        if deck.is_empty:
            print(f"❌ {quiz_id}: no questions loaded")
            exit_code = 1
        else:
            print(f"{quiz_id}: {len(deck)} unique questions")
    return exit_code


async def run_bot_with_config(config):
    from kanjiquiz.bot import run_bot
    await run_bot(get_bot_token(config), config)


def build_parser():
    parser = argparse.ArgumentParser(description="Kanji Quiz Bot")
    parser.add_argument("--config", default=DEFAULT_CONFIG, help="path to the JSON config file")
    subparsers = parser.add_subparsers(dest="command")
    validate = subparsers.add_parser("validate", help="check quiz files for duplicate questions")
    validate.add_argument("quizzes", nargs="*", help="quiz ids to check (default: all)")
    validate.add_argument("--fix", action="store_true", help="write merged <file>.fix copies")
    return parser


def main():
    args = build_parser().parse_args()

    config = load_config(args.config)
    setup_logging_from_config(config)

    if args.command == "validate":
        sys.exit(validate_quizzes(config, args.quizzes, args.fix))

    print("🤖 Starting Kanji Quiz Bot...")
    asyncio.run(run_bot_with_config(config))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n👋 Kanji Quiz Bot stopped")
    except Exception as e:
        print(f"❌ Kanji Quiz Bot exited with an error: {e}")
        sys.exit(1)
