"""Command-line entry point: send one message and print the reply."""

import argparse
import asyncio
import logging
import sys

from .client import SessionClient
from .config import settings
from .exceptions import StreamError
from .rest import APIError, SessionApiClient
from .sessions.models import InterruptData, MessageRole
from .sessions.store import EventJournal
from .websocket.handler import SessionCallbacks

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agentwire",
        description="Send a message to an agent session and stream the reply",
    )
    parser.add_argument("message", help="Message to send")
    parser.add_argument("--session", "-s", help="Session id to bind (default: create one)")
    parser.add_argument("--url", default=settings.ws_url, help="Chat WebSocket URL")
    parser.add_argument("--api-url", default=settings.api_url, help="REST API base URL")
    parser.add_argument("--token", default=settings.auth_token, help="Auth token")
    parser.add_argument(
        "--journal",
        default=settings.journal_path,
        help="SQLite file to record the event stream in",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=300.0,
        help="Seconds to wait for the turn to finish",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    return parser


async def run_session(args: argparse.Namespace) -> int:
    """Connect, send ``args.message``, and print the final assistant reply."""
    config = settings.model_copy(
        update={
            "ws_url": args.url,
            "api_url": args.api_url,
            "auth_token": args.token,
            "journal_path": args.journal,
        }
    )

    journal = None
    if config.journal_file:
        journal = EventJournal(config.journal_file)
        await journal.initialize()
        logger.info(f"Journal path: {config.journal_file}")

    finished = asyncio.Event()
    failure: list[Exception] = []

    def on_error(error: Exception) -> None:
        logger.error(f"Session error: {error}")
        if isinstance(error, StreamError) and error.terminal:
            failure.append(error)
            finished.set()

    def on_interrupt(interrupt: InterruptData) -> None:
        logger.info(f"Interrupted: {interrupt.reason or interrupt.value}")
        # Paused until a decision arrives
        finished.set()

    callbacks = SessionCallbacks(
        on_message_complete=lambda m: logger.info(f"Message {m.id} complete ({len(m.content)} chars)"),
        on_file_operation=lambda e: logger.info(f"File {e.operation}: {e.path}"),
        on_interrupt=on_interrupt,
        on_done=lambda reason: finished.set(),
        on_error=on_error,
    )

    api = SessionApiClient(config)
    try:
        session_id = args.session
        if not session_id:
            conversation = await api.create_session(title=args.message[:50])
            session_id = conversation.cid
            logger.info(f"Created session {session_id}")

        async with SessionClient(
            config, session_id=session_id, callbacks=callbacks, api=api, journal=journal
        ) as client:
            await client.connect()
            await client.send_message(args.message)
            try:
                await asyncio.wait_for(finished.wait(), timeout=args.timeout)
            except asyncio.TimeoutError:
                logger.error(f"No reply within {args.timeout}s")
                return 1
            if failure:
                return 1

            if client.state.interrupt is not None:
                print(f"[interrupt pending: {client.state.interrupt.reason or 'decision required'}]")
            for message in reversed(client.state.messages):
                if message.role == MessageRole.ASSISTANT:
                    print(message.content)
                    break
            return 0 if client.state.error is None else 1
    except (StreamError, APIError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    finally:
        await api.close()
        if journal:
            await journal.close()


def run():
    """Run the command-line client."""
    args = build_parser().parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    sys.exit(asyncio.run(run_session(args)))


if __name__ == "__main__":
    run()
