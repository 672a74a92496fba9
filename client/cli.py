#!/usr/bin/env python3
import argparse
import logging
import sys
from dataclasses import replace

from client.config import TRANSPORTS, ClientConfig
from client.http import ChatClient, ClientError
from client.session import ChatSession, SessionBusyError


WELCOME = "Chat ready. Commands: /clear, /status, /quit"


def _build_config(args) -> ClientConfig:
    config = ClientConfig.from_env()
    if args.url:
        config = replace(config, base_url=args.url)
    if args.transport:
        config = config.with_transports(*args.transport)
    return config


def _print_status(client: ChatClient) -> None:
    status = client.status()
    line = f"{status.status} {status.endpoint} (checked {status.last_checked:%H:%M:%S})"
    if status.error:
        line += f": {status.error}"
    print(line)


def run_chat(client: ChatClient, read=input) -> int:
    session = ChatSession(client)
    print(WELCOME)
    while True:
        try:
            text = read("> ")
        except (EOFError, KeyboardInterrupt):
            print()
            return 0

        command = text.strip()
        if command in ("/quit", "/exit"):
            return 0
        if command == "/clear":
            session.clear()
            print("(history cleared)")
            continue
        if command == "/status":
            _print_status(client)
            continue

        try:
            reply = session.send(text)
        except SessionBusyError as e:
            print(e)
            continue
        if reply is None:
            continue
        print(reply.content)
        if session.last_error:
            print(f"[error] {session.last_error}", file=sys.stderr)


def run_serve(args) -> int:
    import uvicorn

    uvicorn.run("app.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="edgechat", description="Chat proxy and terminal client")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="run the proxy")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8787)
    serve.add_argument("--reload", action="store_true")

    for name, help_text in (("chat", "interactive chat"), ("ask", "ask a single question")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--url", help="proxy base URL (default: $CHAT_API_URL)")
        p.add_argument(
            "--transport",
            action="append",
            choices=TRANSPORTS,
            help="transport attempt, repeat to add fallbacks (e.g. --transport graphql --transport rest)",
        )
        if name == "ask":
            p.add_argument("prompt", help="question text")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="[%(asctime)s] %(levelname)s - %(message)s",
    )

    if args.command == "serve":
        return run_serve(args)
    if args.command not in ("chat", "ask"):
        parser.print_usage()
        return 1

    try:
        client = ChatClient(_build_config(args))
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return 1

    if args.command == "chat":
        return run_chat(client)

    try:
        print(client.send([{"role": "user", "content": args.prompt}]))
    except (ClientError, ValueError) as e:
        print(f"Request failed: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
