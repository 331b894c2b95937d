from __future__ import annotations

import asyncio
import logging
import signal
import sys
import traceback
from typing import Any

from parley.app.config import load_credentials, resolve_args
from parley.app.diagnostics import hint_for_exception, summarize_exception
from parley.app.logging_setup import setup_app_logger
from parley.app.services import build_session
from parley.app.session import TranslationSession
from parley.app.state import MicState
from parley.audio.mic import MicCapture
from parley.contracts import Banner, TranscriptSegment, TranslationSegment
from parley.errors import UnsupportedPlatform


def _console_listener(stop: asyncio.Event, print_console: bool):
    def _listener(event: str, payload: Any) -> None:
        if event == "mic" and payload == MicState.OFF:
            stop.set()
            return
        if not print_console:
            return
        if event == "transcript" and isinstance(payload, TranscriptSegment) and payload.is_final:
            print(f"[{payload.speaker.value}] {payload.text}", flush=True)
        elif event == "translation" and isinstance(payload, TranslationSegment):
            print(f"  -> {payload.text}", flush=True)
        elif event == "banner" and isinstance(payload, Banner):
            print(f"({payload.kind.value}) {payload.message}", file=sys.stderr, flush=True)

    return _listener


async def run_session(session: TranslationSession, *, print_console: bool = True) -> int:
    stop = asyncio.Event()
    session.add_listener(_console_listener(stop, print_console))
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, stop.set)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no signal handlers; Ctrl+C raises KeyboardInterrupt instead.
        pass

    try:
        await session.initialize()
        if not await session.start_recording():
            return 1
        print("Listening. Press Ctrl+C to stop.", file=sys.stderr, flush=True)
        await stop.wait()
        return 0
    finally:
        await session.aclose()


def main(argv: list[str] | None = None) -> int:
    args = resolve_args(argv)
    logger, _log_dir, log_path = setup_app_logger()
    if args.debug:
        logger.setLevel(logging.DEBUG)
    logger.info("app_start", extra={"config_path": str(getattr(args, "config", "")), "argv": argv or []})

    if args.list_devices:
        try:
            print(MicCapture.list_devices())
        except UnsupportedPlatform as e:
            print(str(e), file=sys.stderr)
            return 1
        return 0

    session = build_session(args, load_credentials(), logger=logger)
    try:
        return asyncio.run(run_session(session, print_console=bool(args.print_console)))
    except KeyboardInterrupt:
        return 0
    except Exception:
        detail = traceback.format_exc()
        logger.exception("app_crashed")
        summary = summarize_exception(detail)
        print(f"Error: {summary}\n{hint_for_exception(summary)}\nLog: {log_path}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
