import argparse
import asyncio
import logging
from typing import List, Optional

from . import config
from . import crypto
from .challenge import probe_peer, run_responder
from .discovery import info_hash_for, topic_id_for
from .errors import ConfigError, TopicChatError
from .framing import split_host_port
from .ticket import NodeAddr, ticket_for

"""
run_node.py — single entry point for the topicchat tools.

What you can do here:
- id:       print the node id derived for NAME (share it with friends)
- add:      append friend node ids to the allow-list
- friends:  list the allow-list (minus yourself)
- topic:    show the gossip topic id and DHT info hash for a topic string
- serve:    run the WHOAMI responder until Ctrl-C
- probe:    ask HOST:PORT to prove which node id it holds
- ticket:   print an invite ticket for a topic
"""

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


# -------------------------
# Process runners (thin wrappers)
# -------------------------

async def run_serve(name: str, port: int, host: str) -> None:
    secret = config.derive_secret_key(name)
    print(f"Serving WHOAMI as {crypto.export_node_id(crypto.public_key_bytes(secret))} on {host}:{port}")
    await run_responder(secret, port, host)


async def run_probe(name: str, target: str, timeout: float) -> int:
    secret = config.derive_secret_key(name)
    addr = split_host_port(target)
    try:
        node_id = await probe_peer(addr, timeout, secret)
    except TopicChatError as exc:
        print(f"{target}: {type(exc).__name__}: {exc}")
        return 1

    friends = config.load_friends()
    status = "friend" if node_id in friends else "unknown"
    print(f"{target}: {crypto.export_node_id(node_id)} ({status})")
    return 0


def run_ticket(name: str, topic: str, node_addrs: List[str]) -> None:
    me = crypto.public_key_bytes(config.derive_secret_key(name))
    print(ticket_for(topic, [NodeAddr(node_id=me, addrs=list(node_addrs))]))


# -------------------------
# Args
# -------------------------

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="topicchat", description="Signed chat events and peer identity probes")
    p.add_argument("name", help="Display name; your key is derived from it")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("id")

    sp = sub.add_parser("add")
    sp.add_argument("friends", nargs="+")

    sub.add_parser("friends")

    sp = sub.add_parser("topic")
    sp.add_argument("topic")

    sp = sub.add_parser("serve")
    sp.add_argument("--host", default="0.0.0.0")
    sp.add_argument("--port", type=int, default=7777)

    sp = sub.add_parser("probe")
    sp.add_argument("target", help="HOST:PORT")
    sp.add_argument("--timeout", type=float, default=3.0)

    sp = sub.add_parser("ticket")
    sp.add_argument("topic")
    sp.add_argument("--addr", action="append", default=[], help="HOST:PORT to include (repeatable)")

    return p.parse_args(argv)


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Dispatch into the chosen command; keep top-level code very small."""
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    try:
        if args.command == "id":
            node_id = crypto.public_key_bytes(config.derive_secret_key(args.name))
            print(crypto.export_node_id(node_id))
            print(f"fingerprint {crypto.fingerprint(node_id)}")

        elif args.command == "add":
            friends = config.add_friends(args.friends)
            print(f"{len(friends)} friends on file")

        elif args.command == "friends":
            me = crypto.public_key_bytes(config.derive_secret_key(args.name))
            for friend in config.load_friends_without_me(me):
                print(crypto.export_node_id(friend))

        elif args.command == "topic":
            print(f"topic id  {topic_id_for(args.topic).hex()}")
            print(f"info hash {info_hash_for(args.topic).hex()}")

        elif args.command == "serve":
            try:
                asyncio.run(run_serve(args.name, args.port, args.host))
            except KeyboardInterrupt:
                pass

        elif args.command == "probe":
            return asyncio.run(run_probe(args.name, args.target, args.timeout))

        elif args.command == "ticket":
            run_ticket(args.name, args.topic, args.addr)

    except ConfigError as exc:
        raise SystemExit(f"config error: {exc}")
    except ValueError as exc:
        raise SystemExit(f"bad argument: {exc}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
