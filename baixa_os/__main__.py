from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Sequence

from baixa_os.config import ConfigError, load_config
from baixa_os.controller import ConflictError, ExecutionController, build_controller
from baixa_os.gcom.models import GcomError


async def _list_once(controller: ExecutionController) -> int:
    order_ids = await controller.list_once()
    print(json.dumps({"count": len(order_ids), "order_ids": order_ids}, ensure_ascii=False), flush=True)
    return 0


async def _run(controller: ExecutionController, run_id: str | None) -> int:
    """Start a closure run and keep it going until it halts or a signal arrives."""

    async def _request_stop() -> None:
        try:
            await controller.stop()
        except ConflictError:
            pass

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: loop.create_task(_request_stop()))
        except NotImplementedError:
            # Windows event loops do not support custom signal handlers.
            pass

    job_id = await controller.start(run_id)
    print(f"[baixa] Run {job_id} started. Send SIGINT/SIGTERM to stop after the current order.", flush=True)
    await controller.wait()
    print(f"[baixa] Run {job_id} finished. Status: {controller.status().describe()}", flush=True)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="baixa_os", description="GCOM service order closure bot")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="Log in, list the pending orders once and exit")

    run_parser = subparsers.add_parser("run", help="Close pending orders until stopped or halted")
    run_parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    parsed = parser.parse_args(list(argv) if argv is not None else sys.argv[1:])

    try:
        controller = build_controller(load_config())
    except ConfigError as exc:
        print(f"[baixa] Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        if parsed.command == "list":
            return asyncio.run(_list_once(controller))
        if parsed.command == "run":
            return asyncio.run(_run(controller, parsed.run_id))
    except GcomError as exc:
        print(f"[baixa] {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
