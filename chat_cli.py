"""Interactive terminal chat.

Usage::

    python chat_cli.py --provider claude --system-prompt "You are terse."

Commands inside the session: /reset, /history, /summary, /save [FILE], /quit.
"""

import argparse
import sys

from loguru import logger

from chatbot.config import ConfigNode, load_config
from chatbot.errors import ChatbotError
from chatbot.llm import ChatbotClient, get_chatbot
from chatbot.storage import read_messages, read_system_prompt, save_conversation
from chatbot.text import format_conversation


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Terminal chat with an LLM provider")
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument("--provider", choices=["openai", "claude"], help="Override llm.provider")
    parser.add_argument("--model", help="Override llm.model")
    parser.add_argument("--system-prompt", help="Override conversation.system_prompt")
    parser.add_argument("--max-history", type=int, help="Override conversation.max_history")
    parser.add_argument("--load", metavar="FILE", help="Resume a saved conversation")
    parser.add_argument("--save", metavar="FILE", help="Save the conversation on exit")
    return parser


def create_bot(args: argparse.Namespace, config: ConfigNode) -> ChatbotClient:
    """Build a client from a loaded config with command-line overrides applied."""
    data = config.to_dict()
    llm = data.setdefault("llm", {})
    conversation = data.setdefault("conversation", {})
    if args.provider:
        llm["provider"] = args.provider
    if args.model:
        llm["model"] = args.model
    if args.max_history is not None:
        conversation["max_history"] = args.max_history
    if args.system_prompt:
        conversation["system_prompt"] = args.system_prompt
    elif args.load:
        saved_prompt = read_system_prompt(args.load)
        if saved_prompt is not None:
            conversation["system_prompt"] = saved_prompt

    bot = get_chatbot(ConfigNode(data))
    if args.load:
        bot.conversation.restore(read_messages(args.load))
        logger.info(f"Resumed conversation from {args.load}: {bot.conversation.summary()}")
    return bot


def handle_command(bot: ChatbotClient, line: str, save_path: str | None) -> bool:
    """Run a /command.  Return False when the session should end."""
    command, _, arg = line.partition(" ")
    if command == "/quit":
        return False
    if command == "/reset":
        bot.reset()
        print("Conversation reset.")
    elif command == "/history":
        print(format_conversation(bot.conversation, include_system=True))
    elif command == "/summary":
        print(bot.describe())
    elif command == "/save":
        target = arg.strip() or save_path
        if not target:
            print("Usage: /save FILE")
        else:
            save_conversation(bot.conversation, target)
    else:
        print(f"Unknown command: {command}")
    return True


def run(bot: ChatbotClient, save_path: str | None = None) -> None:
    logger.info(f"Chatting with {bot!r} | {bot.conversation.summary()}")
    while True:
        try:
            line = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not line:
            continue
        if line.startswith("/"):
            if not handle_command(bot, line, save_path):
                break
            continue
        try:
            reply = bot.chat(line)
        except ChatbotError as exc:
            logger.error(f"Request failed: {exc}")
            continue
        print(f"bot> {reply}")

    if save_path:
        save_conversation(bot.conversation, save_path)


if __name__ == "__main__":
    args = build_parser().parse_args()

    config = load_config(args.config)
    logger.remove()
    logger.add(sys.stderr, level=config.section("logging").get("level", "INFO"))

    try:
        bot = create_bot(args, config)
    except (ChatbotError, FileNotFoundError) as exc:
        logger.error(str(exc))
        sys.exit(1)
    run(bot, save_path=args.save)
