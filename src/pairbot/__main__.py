"""CLI entry point for pairbot."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from pairbot.app import PairbotApp, build_graph, build_templates
from pairbot.config import load_config
from pairbot.core.errors import FlowValidationError
from pairbot.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="pairbot",
        description="QR-paired messaging session with a scripted chatbot",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    for name, help_text in (
        ("start", "Start the session"),
        ("config-check", "Validate configuration"),
        ("flow-check", "Validate the dialogue flow"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "flow-check":
        _check_flow(args.config, args.env)
    elif args.command == "start":
        _run(args.config, args.env)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        print(f"Configuration valid: {config_path}")
        print(f"  Transport: {config.session.transport or '(not set)'}")
        print(f"  Auth directory: {config.session.auth_dir}")
        reconnect = config.session.reconnect
        print(f"  Reconnect: {reconnect.max_attempts} attempts, base {reconnect.base_delay}s")
        print(f"  QR: {config.qr.default_format} ({config.qr.width}px), valid {config.qr.ttl_seconds:.0f}s")
        print(f"  Sent history: {config.messages.max_history_size} messages")
        print(
            f"  Pairing limit: {config.rate_limit.max_requests} per "
            f"{config.rate_limit.window_seconds:.0f}s"
        )
        print(f"  Templates: {', '.join(build_templates(config).ids())}")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_flow(config_path: str, env_path: str) -> None:
    """Load and validate the dialogue graph."""
    try:
        config = load_config(config_path, env_path)
        graph = build_graph(config)
    except (FlowValidationError, FileNotFoundError) as e:
        print(f"Flow error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"Dialogue flow valid: {len(graph)} steps")
    for step_id in graph.step_ids:
        step = graph.get(step_id)
        marks = []
        if step_id == graph.start:
            marks.append("start")
        if step_id == graph.closing:
            marks.append("closing")
        if step.is_terminal:
            marks.append("terminal")
        suffix = f" [{', '.join(marks)}]" if marks else ""
        targets = ", ".join(f"{k} -> {v}" for k, v in step.transitions.items()) or "-"
        print(f"  {step_id}{suffix}: {targets}")


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        try:
            app = PairbotApp(config)
        except Exception as e:
            print(f"Startup error: {e}", file=sys.stderr)
            sys.exit(1)

        await app.start()
        await stop_event.wait()
        await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
