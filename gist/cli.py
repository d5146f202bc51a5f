"""CLI tool for Gist: fetch readable content and refresh feeds by hand.

Usage:
    python -m gist.cli fetch 42
    python -m gist.cli extract https://example.com/post
    python -m gist.cli add-feed https://example.com/feed.xml --full-text
    python -m gist.cli refresh
"""

import argparse
import asyncio
import json
import logging
import sys

from gist.services.errors import GistError


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def _cmd_fetch(args, services):
    """Fetch (or read back) the readable content of a stored entry."""
    content = await services.readability.fetch_readable_content(args.entry_id)
    if args.output == "json":
        print(json.dumps({"id": args.entry_id, "readableContent": content}, ensure_ascii=False))
    else:
        print(content)


async def _cmd_extract(args, services):
    """Run fetch/challenge/sanitize/extract on a URL without storing anything."""
    article = await services.readability.fetch_article(args.url)
    if args.output == "json":
        print(
            json.dumps(
                {
                    "url": args.url,
                    "title": article.title,
                    "method": article.method,
                    "textLength": article.text_length,
                    "content": article.content_html,
                },
                indent=2,
                ensure_ascii=False,
            )
        )
    else:
        print(article.content_html)


async def _cmd_add_feed(args, services):
    from gist.core.database import async_session
    from gist.models import Feed

    async with async_session() as session:
        feed = Feed(url=args.url, fetch_full_text=args.full_text)
        session.add(feed)
        await session.commit()
        print(f"Added feed {feed.id}: {feed.url}", file=sys.stderr)


async def _cmd_refresh(args, services):
    """Run one bulk refresh cycle in the foreground."""
    await services.refresh.refresh_all()
    print("Refresh completed", file=sys.stderr)


_COMMANDS = {
    "fetch": _cmd_fetch,
    "extract": _cmd_extract,
    "add-feed": _cmd_add_feed,
    "refresh": _cmd_refresh,
}


async def _run(args) -> int:
    from gist.core.container import build_services
    from gist.core.database import async_session, init_db

    await init_db()
    services = build_services(async_session)
    try:
        await _COMMANDS[args.command](args, services)
    except GistError as e:
        print(f"[ERROR] {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    finally:
        await services.aclose()
    return 0


def main():
    parser = argparse.ArgumentParser(
        prog="gist",
        description="Gist CLI: full-text fetching and feed refresh",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "-o", "--output", default="json",
        choices=["json", "html"],
        help="Output format (default: json)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    fetch_parser = subparsers.add_parser("fetch", help="Readable content for a stored entry")
    fetch_parser.add_argument("entry_id", type=int, help="Entry ID")

    extract_parser = subparsers.add_parser("extract", help="Extract a URL without storing it")
    extract_parser.add_argument("url", help="Article URL")

    feed_parser = subparsers.add_parser("add-feed", help="Subscribe to a feed")
    feed_parser.add_argument("url", help="RSS/Atom feed URL")
    feed_parser.add_argument(
        "--full-text", action="store_true", help="Fetch readable content for new entries"
    )

    subparsers.add_parser("refresh", help="Refresh all feeds once")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _setup_logging(args.verbose)
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
