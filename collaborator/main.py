"""CLI entry point for Collaborator.

A terminal chat loop for development and testing.  For production, use the
FastAPI server (collaborator/server.py).

Usage:
    python -m collaborator.main                  # normal mode (quiet)
    python -m collaborator.main --debug          # debug mode (shows API calls)
    python -m collaborator.main --check-graph    # test Graph credentials and exit
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
import uuid

from collaborator.agent import create_collaborator_agent
from collaborator.config import validate_environment
from collaborator.errors import ConfigurationError
from collaborator.services.metrics import metrics

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("collaborator").setLevel(logging.DEBUG if debug else logging.INFO)


def _new_conversation() -> str:
    return f"cli-{uuid.uuid4()}"


def main(argv: list[str] | None = None) -> int:
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Collaborator CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--check-graph", action="store_true",
        help="Check Microsoft Graph connectivity and exit",
    )
    parser.add_argument(
        "--user-email", default=None,
        help="E-mail / UPN to act as (used for Planner lookups)",
    )
    args = parser.parse_args(argv)

    _configure_logging(debug=args.debug)

    try:
        validate_environment()
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 1

    agent = create_collaborator_agent()

    if args.check_graph:
        result = agent.check_graph()
        print(result["message"])
        if result.get("user_email"):
            print(f"  Sample user: {result['user_email']}")
        agent.close()
        return 0 if result["success"] else 1

    print("\n" + "=" * 60)
    print("  Collaborator - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation.")
    print("=" * 60 + "\n")

    user_name = getpass.getuser()
    conversation_id = _new_conversation()
    logger.info("Started new conversation: %s", conversation_id)

    try:
        while True:
            try:
                user_input = input("You: ").strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGoodbye!")
                break

            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "q"):
                print("\nGoodbye!")
                break

            if user_input.lower() == "new":
                conversation_id = _new_conversation()
                print(f"\n>> New conversation started: {conversation_id[:12]}...\n")
                continue

            try:
                reply = agent.handle_message(
                    text=user_input,
                    conversation_id=conversation_id,
                    user_id=user_name,
                    user_name=user_name,
                    user_email=args.user_email,
                )
            except KeyboardInterrupt:
                print("\n\nGoodbye!")
                break

            print(f"\nCollaborator: {reply.text}\n")
    finally:
        agent.close()
        metrics.flush()

    return 0


if __name__ == "__main__":
    sys.exit(main())
