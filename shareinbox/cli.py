"""
share-inbox CLI — pair devices, manage channels, send and fetch.

Commands:
  share-inbox pair              - Generate a hardware-bound secret and print its pairing payload
  share-inbox channels list     - List live channels (expired ones are wiped)
  share-inbox channels add      - Add a channel from a pairing payload
  share-inbox channels rename   - Rename a channel
  share-inbox channels remove   - Remove a channel and its secret
  share-inbox channels wipe     - Remove every channel
  share-inbox send              - Send text to a channel's current topic
  share-inbox fetch             - Fetch the inbox (current + previous window)
  share-inbox status            - Show expiry and next topic rotation
  share-inbox hardware          - Show which hardware identifiers are available
  share-inbox vectors           - Check topic derivation against the pinned test vectors
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any


def _load(args: argparse.Namespace) -> dict[str, Any]:
    from shareinbox.config import load_config

    config_path = Path(args.config) if getattr(args, "config", None) else None
    return load_config(config_path, home=getattr(args, "home", None))


def _open_store(args: argparse.Namespace):
    from shareinbox.config import open_store
    from shareinbox.errors import ShareInboxError

    try:
        return open_store(_load(args))
    except ShareInboxError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def _resolve_channel(store, name: str | None):
    """Pick the named channel, or the first one when no name is given."""
    channels = store.get_channels()
    if not channels:
        print("Error: Not paired. Run 'share-inbox pair' or 'share-inbox channels add'.", file=sys.stderr)
        sys.exit(1)
    if not name:
        return channels[0]
    for channel in channels:
        if channel.name == name:
            return channel
    print(f"Error: No channel named {name!r}", file=sys.stderr)
    sys.exit(1)


def cmd_pair(args: argparse.Namespace) -> None:
    """Generate a new secret bound to this machine and print the pairing payload."""
    from shareinbox.errors import ShareInboxError
    from shareinbox.secret import forge_secret, mask_secret

    config = _load(args)
    try:
        forged = forge_secret(
            expiration_days=args.days if args.days is not None else config["expiration_days"],
            server=config["server"],
            window_seconds=config["window_seconds"],
        )
    except (ShareInboxError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    payload = forged.to_pairing_payload()

    if not args.no_save:
        store = _open_store(args)
        try:
            channel = store.add_channel(payload, args.name)
        except ShareInboxError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Saved channel {channel.name!r}")

    print("Pairing payload (scan or paste on the other device, then discard):")
    print(json.dumps(payload, separators=(",", ":")))
    print()
    print(f"  secret:  {mask_secret(forged.secret)}")
    print(f"  expires: {forged.to_config()['expiresAt'][:10]} ({forged.expiration_days} days)")
    print(f"  window:  {forged.window_seconds / 3600:g} hours")
    print(f"  server:  {forged.server}")


def cmd_channels_list(args: argparse.Namespace) -> None:
    store = _open_store(args)
    channels = store.get_channels()
    if not channels:
        print("No channels.")
        return

    print(f"{len(channels)} channel(s)\n")
    for channel in channels:
        print(
            f"  {channel.name:<20} {channel.server}  "
            f"window={channel.window_seconds // 3600}h  "
            f"expires in {channel.days_remaining()}d"
        )


def cmd_channels_add(args: argparse.Namespace) -> None:
    """Add a channel from a pairing payload (argument, or stdin with '-')."""
    from shareinbox.errors import AlreadyExpired, ShareInboxError

    payload = sys.stdin.read() if args.payload == "-" else args.payload
    store = _open_store(args)
    try:
        channel = store.add_channel(payload.strip(), args.name)
    except AlreadyExpired:
        print("Error: This pairing has already expired. Generate a new one.", file=sys.stderr)
        sys.exit(1)
    except ShareInboxError as e:
        print(f"Error: Invalid pairing payload: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Added channel {channel.name!r} ({channel.days_remaining()} days left)")


def cmd_channels_rename(args: argparse.Namespace) -> None:
    store = _open_store(args)
    if not store.rename_channel(args.old, args.new):
        print(f"Error: Cannot rename {args.old!r} to {args.new!r} (missing or name taken)", file=sys.stderr)
        sys.exit(1)
    print(f"Renamed {args.old!r} -> {args.new!r}")


def cmd_channels_remove(args: argparse.Namespace) -> None:
    store = _open_store(args)
    if not store.remove_channel(args.name):
        print(f"Error: No channel named {args.name!r}", file=sys.stderr)
        sys.exit(1)
    print(f"Removed {args.name!r}")


def cmd_channels_wipe(args: argparse.Namespace) -> None:
    if not args.yes:
        print("Refusing to wipe without --yes", file=sys.stderr)
        sys.exit(1)
    store = _open_store(args)
    store.clear()
    print("All channels wiped.")


def cmd_send(args: argparse.Namespace) -> None:
    """Send text to the channel's current topic."""
    from shareinbox.sender import send

    content = sys.stdin.read() if args.text in (None, "-") else args.text
    if not content.strip():
        print("Error: Nothing to send", file=sys.stderr)
        sys.exit(1)

    config = _load(args)
    store = _open_store(args)
    channel = _resolve_channel(store, args.channel)
    result = send(
        content,
        channel,
        title=args.title,
        topic_length=config["topic_length"],
        timeout=config["fetch_timeout"],
    )
    if not result.ok:
        print(f"Error: Send failed: {result.error}", file=sys.stderr)
        sys.exit(1)
    print(f"Sent via {channel.name!r}")


def cmd_fetch(args: argparse.Namespace) -> None:
    """Fetch current and previous window, merged and deduplicated."""
    from shareinbox.retrieval import fetch_inbox_sync, format_inbox

    config = _load(args)
    store = _open_store(args)
    channel = _resolve_channel(store, args.channel)
    try:
        messages = fetch_inbox_sync(
            channel,
            since=args.since or config["fetch_since"],
            timeout=config["fetch_timeout"],
            topic_length=config["topic_length"],
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    result = format_inbox(messages)

    if args.json:
        print(json.dumps(result, indent=2))
        return

    print(result["summary"])
    for msg in result["messages"]:
        print(f"\n[{msg['time'][:19]}]" + (f" {msg['title']}" if msg["title"] else ""))
        print(msg["content"])
        if msg["attachment_url"]:
            print(f"  attachment: {msg['attachment_url']}")


def cmd_status(args: argparse.Namespace) -> None:
    from shareinbox.retrieval import inbox_status

    store = _open_store(args)
    channel = _resolve_channel(store, args.channel)
    status = inbox_status(channel)

    print(f"Channel {status['name']!r}")
    print(f"  server:        {status['server']}")
    print(f"  expires:       {status['expires_at'][:19]} ({status['days_remaining']} days)")
    print(f"  window:        {status['window_hours']:g} hours")
    print(f"  next rotation: {status['window_expiry'][:19]}")


def cmd_hardware(args: argparse.Namespace) -> None:
    """Show which identifiers feed the fingerprint. Values are not printed."""
    from shareinbox import MIN_HARDWARE_COMPONENTS
    from shareinbox.hardware import collect_hardware_ids

    ids = collect_hardware_ids()
    found = sum(1 for v in ids.values() if v)
    print(f"Platform: {ids['platform']}\n")
    for key in ("cpu", "disk", "mac", "bios", "hostname"):
        print(f"  {key:<9} {'available' if ids[key] else '(not available)'}")
    print()
    if found >= MIN_HARDWARE_COMPONENTS:
        print(f"OK: {found} identifiers available")
    else:
        print(f"FAIL: {found} identifier(s) available, need at least {MIN_HARDWARE_COMPONENTS}")
        sys.exit(1)


def cmd_vectors(args: argparse.Namespace) -> None:
    """Check this build against the cross-implementation test vectors."""
    from shareinbox.totp import TEST_VECTORS, derive_topic

    failed = 0
    for secret, index, expected in TEST_VECTORS:
        got = derive_topic(secret, index)
        ok = got == expected
        failed += not ok
        print(f"  {'OK  ' if ok else 'FAIL'} window={index:<8} {expected}" + ("" if ok else f" got {got}"))
    if failed:
        print(f"\n{failed} vector(s) failed", file=sys.stderr)
        sys.exit(1)
    print("\nAll test vectors passed.")


def _setup_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="share-inbox",
        description="Share to an inbox over a relay using rotating shared-secret topics.",
    )
    from shareinbox import __version__
    parser.add_argument("--version", action="version", version=f"share-inbox {__version__}")
    parser.add_argument("--home", help="Data directory (or set SHAREINBOX_HOME)")
    parser.add_argument("--config", help="Path to config.toml")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-vv for debug)")
    sub = parser.add_subparsers(dest="command")

    # pair
    p_pair = sub.add_parser("pair", help="Generate a hardware-bound pairing")
    p_pair.add_argument("--days", type=int, help="Days until the pairing expires (default 90)")
    p_pair.add_argument("--name", help="Channel name (default: generated)")
    p_pair.add_argument("--no-save", action="store_true", help="Print the payload only, do not store it")

    # channels (with subcommands)
    p_ch = sub.add_parser("channels", help="Manage channels")
    ch_sub = p_ch.add_subparsers(dest="channels_command")

    ch_sub.add_parser("list", help="List live channels")

    p_ch_add = ch_sub.add_parser("add", help="Add a channel from a pairing payload")
    p_ch_add.add_argument("payload", help="Pairing payload JSON, or '-' for stdin")
    p_ch_add.add_argument("--name", help="Channel name (default: generated)")

    p_ch_ren = ch_sub.add_parser("rename", help="Rename a channel")
    p_ch_ren.add_argument("old", help="Current name")
    p_ch_ren.add_argument("new", help="New name")

    p_ch_rm = ch_sub.add_parser("remove", help="Remove a channel")
    p_ch_rm.add_argument("name", help="Channel name")

    p_ch_wipe = ch_sub.add_parser("wipe", help="Remove every channel")
    p_ch_wipe.add_argument("--yes", action="store_true", help="Confirm the wipe")

    # send
    p_send = sub.add_parser("send", help="Send text to the inbox")
    p_send.add_argument("text", nargs="?", help="Text to send ('-' or omitted reads stdin)")
    p_send.add_argument("-c", "--channel", help="Channel name (default: first channel)")
    p_send.add_argument("--title", help="Optional message title")

    # fetch
    p_fetch = sub.add_parser("fetch", help="Fetch the inbox")
    p_fetch.add_argument("-c", "--channel", help="Channel name (default: first channel)")
    p_fetch.add_argument("--since", help="How far back to look, e.g. 12h (default 24h)")
    p_fetch.add_argument("--json", action="store_true", help="Print JSON")

    # status
    p_status = sub.add_parser("status", help="Show pairing status")
    p_status.add_argument("-c", "--channel", help="Channel name (default: first channel)")

    sub.add_parser("hardware", help="Show available hardware identifiers")
    sub.add_parser("vectors", help="Verify topic derivation test vectors")

    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if not args.command:
        print("share-inbox — rotating-topic inbox over a pub/sub relay")
        print()
        print("Usage:")
        print("  share-inbox pair [--days 90] [--name laptop]")
        print("  share-inbox channels {list|add|rename|remove|wipe}")
        print("  share-inbox send 'text' [-c channel]")
        print("  share-inbox fetch [-c channel] [--since 12h] [--json]")
        print("  share-inbox status [-c channel]")
        print("  share-inbox hardware")
        print("  share-inbox vectors")
        print()
        print("Run 'share-inbox <command> --help' for details on any command.")
        sys.exit(0)

    if args.command == "channels":
        channel_commands = {
            "list": cmd_channels_list,
            "add": cmd_channels_add,
            "rename": cmd_channels_rename,
            "remove": cmd_channels_remove,
            "wipe": cmd_channels_wipe,
        }
        cc = getattr(args, "channels_command", None)
        if not cc:
            print("Usage: share-inbox channels {list|add|rename|remove|wipe}")
            sys.exit(0)
        channel_commands[cc](args)
        return

    commands = {
        "pair": cmd_pair,
        "send": cmd_send,
        "fetch": cmd_fetch,
        "status": cmd_status,
        "hardware": cmd_hardware,
        "vectors": cmd_vectors,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
