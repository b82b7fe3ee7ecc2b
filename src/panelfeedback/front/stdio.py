from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Set, TextIO

from dotenv import load_dotenv

from panelfeedback.core.config import Settings
from panelfeedback.core.logging_config import setup_logging
from panelfeedback.front.protocol import TransportFront

logger = logging.getLogger("panelfeedback.stdio")


def _write_message(stdout: TextIO, msg: dict[str, Any]) -> None:
    stdout.write(json.dumps(msg, ensure_ascii=False) + "\n")
    stdout.flush()


def _read_line(stdin: TextIO) -> str:
    """Read one line, replacing bytes that are not valid UTF-8."""
    buffer = getattr(stdin, "buffer", None)
    if buffer is None:
        return stdin.readline()
    return buffer.readline().decode("utf-8", errors="replace")


async def _serve_line(front: TransportFront, line: str, stdout: TextIO) -> None:
    response = await front.handle_line(line)
    if response is not None:
        _write_message(stdout, response)


async def run_stdio(front: TransportFront, stdin: TextIO = sys.stdin, stdout: TextIO = sys.stdout) -> None:
    """Serve line-delimited JSON-RPC until stdin closes.

    Each line is handled in its own task, so a long ``tools/call`` does not
    hold up ``ping`` or a second call. Output lines are written whole from
    the event loop thread and never interleave.
    """
    loop = asyncio.get_running_loop()
    tasks: Set["asyncio.Task[None]"] = set()
    while True:
        line = await loop.run_in_executor(None, _read_line, stdin)
        if not line:
            break
        if not line.strip():
            continue
        task = loop.create_task(_serve_line(front, line, stdout))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
    if tasks:
        logger.info("stdin closed; waiting for %d in-flight call(s)", len(tasks))
        await asyncio.gather(*tasks, return_exceptions=True)


def main() -> None:
    load_dotenv()
    settings = Settings.from_env()
    setup_logging(log_dir=settings.log_dir, log_level=settings.log_level)
    logger.info("panel-feedback MCP stdio front started")
    try:
        asyncio.run(run_stdio(TransportFront(settings)))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
