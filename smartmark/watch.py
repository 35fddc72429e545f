"""Terminal dashboard for a remote SmartMark server.

Renders the live collection whenever it changes and reads simple commands
from stdin::

    add <url> <title...>   save a bookmark
    del <n>                delete the n-th bookmark as listed
    refresh                re-fetch the full list
    dismiss                clear the current error message
    quit                   exit
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import dataclass
from datetime import datetime

from smartmark.config import Config
from smartmark.errors import SyncError
from smartmark.services.common import (
    bookmark_count_label,
    display_domain,
    format_relative_time,
)
from smartmark.services.feed import PollingChangeFeed
from smartmark.services.live_sync import LiveCollection
from smartmark.services.store import HttpStore, build_client


logger = logging.getLogger(__name__)


@dataclass
class Command:
    name: str
    args: list[str]


COMMANDS = {"add", "del", "refresh", "dismiss", "quit"}
USAGE = "Commands: add <url> <title> | del <n> | refresh | dismiss | quit"


def parse_command(line: str) -> Command | None:
    parts = line.strip().split()
    if not parts:
        return None
    name = parts[0].lower()
    if name not in COMMANDS:
        return None
    if name == "add":
        if len(parts) < 3:
            return None
        return Command(name, [parts[1], " ".join(parts[2:])])
    if name == "del":
        if len(parts) != 2 or not parts[1].isdigit():
            return None
        return Command(name, [parts[1]])
    return Command(name, [])


def render(view: LiveCollection, now: datetime | None = None) -> str:
    items = view.items
    lines = ["Your Bookmarks", bookmark_count_label(len(items)), ""]
    if view.error:
        lines.append(f"Error: {view.error}  (type 'dismiss' to clear)")
        lines.append("")

    if view.loading:
        lines.append("Loading bookmarks...")
    elif not items:
        lines.append("No bookmarks yet")
        lines.append("Save your first one with: add <url> <title>")
    else:
        for index, record in enumerate(items, start=1):
            lines.append(f"{index:>3}. {record.title}")
            lines.append(
                f"     {display_domain(record.url)} | "
                f"{format_relative_time(record.created_at, now)}"
            )

    lines.append("")
    lines.append("Live sync" if view.live else "Offline: snapshot only")
    return "\n".join(lines)


def execute(view: LiveCollection, command: Command) -> bool:
    """Apply one command; returns False when the dashboard should exit."""
    if command.name == "quit":
        return False
    if command.name == "add":
        url, title = command.args
        view.create(title=title, url=url)
    elif command.name == "del":
        items = view.items
        index = int(command.args[0]) - 1
        if 0 <= index < len(items):
            view.delete(items[index].id)
        else:
            print(f"No bookmark #{command.args[0]}", flush=True)
    elif command.name == "refresh":
        view.refresh()
    elif command.name == "dismiss":
        view.dismiss_error()
    return True


def run_watch(
    base_url: str = Config.SMARTMARK_API_URL,
    token: str = Config.SMARTMARK_API_TOKEN,
    stdin=None,
) -> int:
    stdin = stdin or sys.stdin
    client = build_client(base_url, token, timeout=Config.REQUEST_TIMEOUT)
    store = HttpStore(client)
    try:
        identity = store.whoami()
    except SyncError as exc:
        print(f"Could not reach SmartMark at {base_url}: {exc}", file=sys.stderr)
        client.close()
        return 1

    feed = PollingChangeFeed(
        client,
        wait_seconds=Config.FEED_WAIT_SECONDS,
        poll_interval=Config.FEED_POLL_INTERVAL,
        request_timeout=Config.REQUEST_TIMEOUT,
    )
    view = LiveCollection(
        store,
        feed,
        workers=Config.SYNC_WORKERS,
        resubscribe_attempts=Config.RESUBSCRIBE_ATTEMPTS,
        resubscribe_backoff=Config.RESUBSCRIBE_BACKOFF,
    )
    render_lock = threading.Lock()

    def redraw(current: LiveCollection) -> None:
        with render_lock:
            print("\n" + render(current), flush=True)

    view.add_listener(redraw)
    logger.info("Watching bookmarks of user %s at %s", identity.get("id"), base_url)
    print(f"Signed in as {identity.get('username')}", flush=True)
    try:
        with view.activate(identity["id"]):
            for line in stdin:
                command = parse_command(line)
                if command is None:
                    if line.strip():
                        print(USAGE, flush=True)
                    continue
                if not execute(view, command):
                    break
    except KeyboardInterrupt:
        pass
    finally:
        client.close()
    return 0
