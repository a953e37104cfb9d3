#!/usr/bin/env python3
# articlerelay/cli.py
"""
Command-line dispatcher.

Reads articles from a file, enqueues each one and flushes once:
    articlerelay dispatch articles.json
    python -m articlerelay.cli dispatch articles.jsonl --concurrent

Input is a JSON array of article objects or one JSON object per line:
    {"channel_id": "123", "text": "New post", "role_ids": ["456"]}

Environment:
    DISCORD_BOT_TOKEN: bot token (or --token)
"""
import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from articlerelay.config import settings
from articlerelay.core.dispatch import (
    ArticleIn,
    ArticleMessageError,
    ArticleMessageFactory,
    ArticleMessageQueue,
)
from articlerelay.infra.http_client import close_all_sessions
from articlerelay.infra.logging_config import get_logger, setup_logging
from articlerelay.infra.metrics import get_metrics_collector
from articlerelay.transport.discord_client import DiscordAPIError, DiscordClient

logger = get_logger(__name__)


def load_articles(path: Path) -> list[ArticleIn]:
    """Parse a JSON array or JSON-lines file into validated articles."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []

    if text.startswith("["):
        records = json.loads(text)
    else:
        records = [json.loads(line) for line in text.splitlines() if line.strip()]

    return [ArticleIn.model_validate(record) for record in records]


async def dispatch(
    articles: list[ArticleIn],
    client: DiscordClient,
    *,
    toggle_role_mentions: bool,
    concurrent: bool,
) -> int:
    factory = ArticleMessageFactory(client, toggle_role_mentions=toggle_role_mentions)
    queue = ArticleMessageQueue(factory, concurrent_destinations=concurrent)

    try:
        for article in articles:
            await queue.enqueue(article)
        await queue.flush(client)
    except DiscordAPIError as exc:
        # immediate sends surface the platform error unwrapped
        logger.error(f"Dispatch failed: {exc}")
        return 1
    except ArticleMessageError as exc:
        logger.error(
            f"Dispatch failed: {exc} ({len(queue)} articles left undelivered)",
            extra={"destination_id": exc.destination_id, "phase": exc.phase},
        )
        return 1
    finally:
        await close_all_sessions()

    counters = get_metrics_collector().get_metrics()["counters"]
    logger.info(f"Dispatch complete: {json.dumps(counters, sort_keys=True)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="articlerelay",
        description="Deliver articles to Discord channels, pinging subscriber roles",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("dispatch", help="Enqueue articles from a file and flush")
    run.add_argument("file", type=Path, help="JSON array or JSON-lines file of articles")
    run.add_argument("--token", "-t", help="Discord bot token (or DISCORD_BOT_TOKEN env var)")
    run.add_argument(
        "--no-toggle", action="store_true",
        help="Never make roles mentionable (send everything immediately)",
    )
    run.add_argument(
        "--concurrent", action="store_true", default=settings.flush_concurrent_destinations,
        help="Process destinations concurrently inside each flush phase",
    )
    run.add_argument("--json-logs", action="store_true", default=settings.log_json, help="Log as JSON lines")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=settings.log_level, use_json=args.json_logs)

    token = args.token or settings.discord_bot_token
    if not token:
        print("Error: DISCORD_BOT_TOKEN environment variable not set", file=sys.stderr)
        return 2

    try:
        articles = load_articles(args.file)
    except (OSError, json.JSONDecodeError, ValidationError) as exc:
        print(f"Error: cannot read articles from {args.file}: {exc}", file=sys.stderr)
        return 2

    logger.info(f"Loaded {len(articles)} articles from {args.file}")
    if args.no_toggle:
        articles = [a.model_copy(update={"toggle_role_mentions": False}) for a in articles]

    return asyncio.run(dispatch(
        articles,
        DiscordClient(token=token),
        toggle_role_mentions=settings.toggle_role_mentions and not args.no_toggle,
        concurrent=args.concurrent,
    ))


if __name__ == "__main__":
    sys.exit(main())
