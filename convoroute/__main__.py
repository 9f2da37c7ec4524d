"""
convoroute CLI entry point.

Provides a local chat loop against the configured providers and a few
maintenance commands for conversation history.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from convoroute import __version__
from convoroute.config.logging import get_logger, setup_logging
from convoroute.config.settings import Settings, load_settings
from convoroute.config.tiers import UsageKind

DEFAULT_CHAT_PROMPT = "You are a helpful, concise assistant."


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog="convoroute",
        description="Route conversational turns across LLM providers with quotas and bounded context",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"convoroute {__version__}",
    )

    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to .env file (default: .env in current directory)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level from config",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Config command
    subparsers.add_parser(
        "config",
        help="Show current configuration",
    )

    # Chat command
    chat_parser = subparsers.add_parser(
        "chat",
        help="Interactive chat through the full orchestration loop",
    )
    chat_parser.add_argument(
        "--conversation-id",
        type=int,
        default=1,
        help="Conversation to read and write history for (default: 1)",
    )
    chat_parser.add_argument(
        "--user-id",
        type=int,
        default=1,
        help="User the turns are billed to (default: 1)",
    )
    chat_parser.add_argument(
        "--grade",
        default=None,
        help="User grade (default: the lowest configured tier)",
    )
    chat_parser.add_argument(
        "--persona",
        default="cli user",
        help="Name shown to the model as the message author",
    )
    chat_parser.add_argument(
        "--prompt",
        default=DEFAULT_CHAT_PROMPT,
        help="System prompt of the conversation mode",
    )
    chat_parser.add_argument(
        "--donor",
        action="store_true",
        help="Treat the user as a donor (no support reminder in the prompt)",
    )

    # Stats command
    stats_parser = subparsers.add_parser(
        "stats",
        help="Show history size and usage counters",
    )
    stats_parser.add_argument("conversation_id", type=int, help="Conversation id")
    stats_parser.add_argument(
        "--grade",
        default=None,
        help="Grade whose limits to compare against (default: the lowest tier)",
    )
    stats_parser.add_argument(
        "--user-id",
        type=int,
        default=None,
        help="Also show this user's request counters",
    )

    # Clear command
    clear_parser = subparsers.add_parser(
        "clear",
        help="Delete the stored history of a conversation",
    )
    clear_parser.add_argument("conversation_id", type=int, help="Conversation id")

    # Context toggle
    context_parser = subparsers.add_parser(
        "context",
        help="Turn history collection on or off for a conversation",
    )
    context_parser.add_argument("conversation_id", type=int, help="Conversation id")
    context_parser.add_argument("state", choices=["on", "off"], help="New state")

    return parser


def cmd_config(settings: Settings) -> int:
    """Show current configuration."""
    logger = get_logger(__name__)

    logger.info("\n=== convoroute Configuration ===\n")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Log Level: {settings.log_level}")
    logger.info(f"Log File: {settings.log_file or 'None (console only)'}")
    logger.info(f"Redis: {settings.redis.url}")
    logger.info(f"Tokenizer: {settings.tokenizer_encoding}")

    logger.info("\nProviders:")
    for name, weight in settings.providers.weights.items():
        endpoint = getattr(settings.providers, name, None)
        model = endpoint.model if endpoint else "(no adapter)"
        key = "Set" if endpoint and endpoint.api_key else "Not set"
        logger.info(f"  {name}: weight {weight}, model {model}, API key {key}")
    logger.info(f"  fallback: {settings.providers.fallback or 'None'}")

    logger.info(f"\nContext agent: {settings.agents.context_model}")
    logger.info(f"Model agent: {settings.agents.model_selection_model}")
    if settings.agents.response_length_enabled:
        logger.info(f"Length agent: {settings.agents.response_length_model}")
    else:
        logger.info("Length agent: disabled")
    logger.info(
        f"\nRetries: {settings.orchestrator.max_retries} "
        f"(backoff {settings.orchestrator.backoff_delay}s, turn timeout {settings.orchestrator.timeout}s)"
    )

    logger.info("\nTiers:")
    for tier in settings.policy_set().tiers:
        logger.info(
            f"  {tier.grade}: {len(tier.models)} models, effort {tier.default_effort}, "
            f"context {tier.context.max_turns} turns / {tier.context.max_tokens} tokens, "
            f"spend ${tier.spending.daily}/day ${tier.spending.monthly}/month"
        )

    return 0


async def cmd_chat(args, settings: Settings) -> int:
    """
    Interactive chat loop.

    Every line typed goes through the same path a production turn takes:
    quotas, history, the agents, provider choice and retries.
    Modes, donations and billing are kept in memory for the session.
    """
    from convoroute.llm.models import ConversationMode, LLMError, OrchestrationError
    from convoroute.llm.orchestrator import build_orchestrator
    from convoroute.quota.models import LimitExceededError
    from convoroute.redis_client import create_redis_client
    from convoroute.repository.memory import (
        InMemoryDonationRepository,
        InMemoryModeRepository,
        InMemoryUsageRepository,
    )

    logger = get_logger(__name__)
    grade = args.grade or settings.policy_set().lowest.grade

    redis = create_redis_client(settings.redis)
    try:
        orchestrator = build_orchestrator(
            settings,
            redis,
            modes=InMemoryModeRepository(default=ConversationMode(name="cli", prompt=args.prompt)),
            donations=InMemoryDonationRepository({args.user_id} if args.donor else None),
            usage=InMemoryUsageRepository(),
        )

        print(f"convoroute chat (conversation {args.conversation_id}, grade {grade}). Ctrl-D to exit.")
        while True:
            try:
                text = await asyncio.to_thread(input, "> ")
            except EOFError:
                print()
                return 0

            text = text.strip()
            if not text:
                continue

            try:
                answer = await orchestrator.handle_turn(
                    args.conversation_id, args.user_id, grade, text, args.persona
                )
            except LimitExceededError as e:
                print(f"[limit] {e}")
                continue
            except (LLMError, OrchestrationError) as e:
                logger.error(f"Turn failed: {e}")
                continue

            print(answer)
    finally:
        await redis.aclose()


async def cmd_stats(args, settings: Settings) -> int:
    """Show history size against the grade's limits, plus usage counters."""
    from convoroute.context.tokenizer import Tokenizer
    from convoroute.context.window import ContextWindowManager
    from convoroute.quota.ledger import UsageLimiter
    from convoroute.redis_client import create_redis_client

    logger = get_logger(__name__)
    policies = settings.policy_set()
    grade = args.grade or policies.lowest.grade

    redis = create_redis_client(settings.redis)
    try:
        manager = ContextWindowManager(redis, Tokenizer(settings.tokenizer_encoding), policies)
        stats = await manager.get_stats(args.conversation_id, grade)

        print(f"\n=== Conversation {args.conversation_id} ({grade}) ===")
        print(f"History enabled: {stats.enabled}")
        print(f"Turns: {stats.current_turns}/{stats.max_turns}")
        print(f"Tokens: {stats.current_tokens}/{stats.max_tokens}")

        if args.user_id is not None:
            limiter = UsageLimiter(redis, policies)
            policy = policies.policy_for(grade)
            print(f"\n=== User {args.user_id} usage ===")
            for kind in UsageKind:
                snapshot = await limiter.get_usage(args.user_id, kind)
                ceiling = policy.usage_ceiling(kind)
                print(
                    f"{kind.value}: {snapshot.daily_count}/{ceiling.daily} today, "
                    f"{snapshot.monthly_count}/{ceiling.monthly} this month"
                )
        return 0
    except Exception as e:
        logger.error(f"Stats failed: {e}", exc_info=True)
        return 1
    finally:
        await redis.aclose()


async def cmd_clear(args, settings: Settings) -> int:
    """Delete a conversation's history."""
    from convoroute.context.tokenizer import Tokenizer
    from convoroute.context.window import ContextWindowManager
    from convoroute.redis_client import create_redis_client

    logger = get_logger(__name__)
    redis = create_redis_client(settings.redis)
    try:
        manager = ContextWindowManager(
            redis, Tokenizer(settings.tokenizer_encoding), settings.policy_set()
        )
        await manager.clear(args.conversation_id)
        print(f"Cleared history of conversation {args.conversation_id}")
        return 0
    except Exception as e:
        logger.error(f"Clear failed: {e}", exc_info=True)
        return 1
    finally:
        await redis.aclose()


async def cmd_context(args, settings: Settings) -> int:
    """Switch history collection on or off."""
    from convoroute.context.tokenizer import Tokenizer
    from convoroute.context.window import ContextWindowManager
    from convoroute.redis_client import create_redis_client

    logger = get_logger(__name__)
    redis = create_redis_client(settings.redis)
    try:
        manager = ContextWindowManager(
            redis, Tokenizer(settings.tokenizer_encoding), settings.policy_set()
        )
        await manager.set_enabled(args.conversation_id, args.state == "on")
        print(f"History for conversation {args.conversation_id}: {args.state}")
        return 0
    except Exception as e:
        logger.error(f"Context toggle failed: {e}", exc_info=True)
        return 1
    finally:
        await redis.aclose()


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Load settings
    try:
        settings = load_settings(env_file=args.env_file)
    except Exception as e:
        print(f"Error loading settings: {e}", file=sys.stderr)
        return 1

    # Override log level if specified
    if args.log_level:
        settings.log_level = args.log_level

    # Setup logging
    setup_logging(settings)

    # Execute command
    if args.command == "config":
        return cmd_config(settings)
    elif args.command == "chat":
        return asyncio.run(cmd_chat(args, settings))
    elif args.command == "stats":
        return asyncio.run(cmd_stats(args, settings))
    elif args.command == "clear":
        return asyncio.run(cmd_clear(args, settings))
    elif args.command == "context":
        return asyncio.run(cmd_context(args, settings))
    else:
        # Default: show help
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
