"""Terminal chat with the Chief of Staff assistant.

Runs the same ChatService as the API, against the configured database, so
the user's connected integrations and settings apply.  For production use
the FastAPI server (src/server.py).

Usage:
    python -m src.main --user-id alice            # quiet
    python -m src.main --user-id alice --debug    # show API calls
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv

from src.agent import CompletionServiceError
from src.bootstrap import build_components, close
from src.services.chat_service import ChatTurn, ServiceNotConfiguredError

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


async def chat_loop(user_id: str) -> None:
    components = await build_components()
    history: list[dict[str, str]] = []
    session_id: str | None = None
    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "You: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue
            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break
            if user_input.lower() == "new":
                history, session_id = [], None
                print("\n>> New session started.\n")
                continue

            try:
                reply = await components.chat.handle_message(
                    user_id,
                    ChatTurn(message=user_input, history=list(history), session_id=session_id),
                )
            except ServiceNotConfiguredError:
                print("\nAI service not configured. Set ANTHROPIC_API_KEY and restart.\n")
                break
            except CompletionServiceError as e:
                logger.error("Completion failed: %s", e)
                print("\nThe AI service is unavailable right now. Please try again.\n")
                continue

            session_id = reply.session_id
            history += [
                {"role": "user", "content": user_input},
                {"role": "assistant", "content": reply.content},
            ]
            if reply.tools_used:
                print(f"  [tools: {', '.join(reply.tools_used)}]")
            print(f"\nAssistant: {reply.content}\n")
    finally:
        await close(components)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Chief of Staff CLI")
    parser.add_argument("--user-id", required=True, help="User whose integrations to use")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Chief of Staff - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    try:
        asyncio.run(chat_loop(args.user_id))
    except KeyboardInterrupt:
        print("\n\nGoodbye!")


if __name__ == "__main__":
    main()
