"""JSON-RPC proxy between an agent and the tool server it drives.

    toolwarden proxy "npx @modelcontextprotocol/server-filesystem ."

The child's stdin is fed straight from ours. Its stdout is read line by
line; lines that parse as a tool-call request are authorized before
they are forwarded. A denied call never reaches the consumer: it is
replaced by a JSON-RPC error reusing the request id. Everything else
(including lines that aren't JSON) passes through byte for byte. Lines
longer than ``LINE_LIMIT`` are collected in pieces and treated the same.

Lines are handled strictly in order. While one call waits for a
decision, later lines queue behind it.
"""

import asyncio
import json
import logging
import re
import shlex
import sys
import threading
from dataclasses import dataclass
from typing import Any, BinaryIO, Sequence

from toolwarden.authorize import Authorizer, TerminalPrompter, get_authorizer

logger = logging.getLogger(__name__)

TOOL_CALL_METHODS = frozenset({"tools/call", "call_tool", "use_tool"})

# (tool name field, arguments field) pairs seen in params
TOOL_FIELD_PAIRS = (("name", "arguments"), ("tool_name", "tool_input"))

DENIAL_CODE = -32000
DENIAL_MESSAGE = "toolwarden: action denied."

# Requests carry whole file contents; don't choke on long lines
LINE_LIMIT = 16 * 1024 * 1024

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize(value: str) -> str:
    """Remove control characters (terminal escapes) from a tool name."""
    return _CONTROL_CHARS.sub("", value)


@dataclass
class ToolCallMessage:
    id: Any
    tool_name: str
    args: Any


def parse_tool_call(line: bytes | str) -> ToolCallMessage | None:
    """Recognize a JSON-RPC tool-call request.

    Returns:
        The call, or None for anything else (including invalid JSON).
    """
    try:
        message = json.loads(line)
    except (ValueError, RecursionError):
        return None

    if not isinstance(message, dict) or message.get("method") not in TOOL_CALL_METHODS:
        return None

    params = message.get("params")
    if not isinstance(params, dict):
        params = {}

    for name_field, args_field in TOOL_FIELD_PAIRS:
        if isinstance(params.get(name_field), str):
            args = params.get(args_field)
            return ToolCallMessage(
                id=message.get("id"),
                tool_name=sanitize(params[name_field]),
                args=args if args is not None else {},
            )
    return ToolCallMessage(id=message.get("id"), tool_name="unknown", args={})


def denial_response(message_id: Any, message: str = DENIAL_MESSAGE) -> bytes:
    """Build the JSON-RPC error line that replaces a denied request."""
    response = {
        "jsonrpc": "2.0",
        "id": message_id,
        "error": {"code": DENIAL_CODE, "message": message},
    }
    return json.dumps(response, separators=(",", ":")).encode("utf-8") + b"\n"


def _exit_code(returncode: int | None) -> int:
    if returncode is None:
        return 1
    # negative means killed by a signal
    return returncode if returncode >= 0 else 128 - returncode


def _open_tty_prompter() -> TerminalPrompter | None:
    try:
        stream = open("/dev/tty", encoding="utf-8")
    except OSError:
        return None
    return TerminalPrompter(stream=stream)


class ProtocolInterceptor:
    """Runs a child process and polices its tool calls.

    Args:
        command: Command to run, as an argv list or a shell-style string.
        authorizer: Authorizer for intercepted calls.
        stdin: Operator input (binary). Defaults to our stdin.
        stdout: Consumer output (binary). Defaults to our stdout.
    """

    def __init__(
        self,
        command: Sequence[str] | str,
        authorizer: Authorizer | None = None,
        stdin: BinaryIO | None = None,
        stdout: BinaryIO | None = None,
    ):
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if len(argv) == 1 and " " in argv[0]:
            argv = shlex.split(argv[0])
        if not argv:
            raise ValueError("No command to proxy")

        self.argv = argv
        self.authorizer = authorizer or get_authorizer()
        self.stdin = stdin if stdin is not None else sys.stdin.buffer
        self.stdout = stdout if stdout is not None else sys.stdout.buffer

    async def handle_line(self, line: bytes) -> bytes:
        """Decide what to forward for one line of child output."""
        call = parse_tool_call(line)
        if call is None:
            return line

        result = await self.authorizer.authorize_headless(call.tool_name, call.args)
        if result.approved:
            return line

        logger.info(f"Denied {call.tool_name!r} (id={call.id!r}): {result.reason or 'denied'}")
        return denial_response(call.id, result.reason or DENIAL_MESSAGE)

    async def run(self) -> int:
        """Run the child to completion.

        Returns:
            The child's exit code.
        """
        process = await asyncio.create_subprocess_exec(
            *self.argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            limit=LINE_LIMIT,
        )
        logger.info(f"Proxying {' '.join(self.argv)} (pid {process.pid})")

        input_task = asyncio.create_task(self._pump_input(process))
        try:
            await self._pump_output(process)
            returncode = await process.wait()
        finally:
            input_task.cancel()
            try:
                await input_task
            except asyncio.CancelledError:
                pass
            if process.returncode is None:
                logger.warning(f"Stopping {self.argv[0]} (pid {process.pid})")
                process.kill()
                await process.wait()

        return _exit_code(returncode)

    async def _pump_input(self, process: asyncio.subprocess.Process) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[bytes] = asyncio.Queue()

        def read_lines() -> None:
            # Blocking reads live on a daemon thread so they never hold up exit
            while True:
                line = self.stdin.readline()
                if loop.is_closed():
                    return
                try:
                    loop.call_soon_threadsafe(queue.put_nowait, line)
                except RuntimeError:
                    # loop closed after the check above
                    return
                if not line:
                    return

        threading.Thread(target=read_lines, name="toolwarden-stdin", daemon=True).start()

        assert process.stdin is not None
        while True:
            line = await queue.get()
            if not line:
                break
            try:
                process.stdin.write(line)
                await process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                return
        process.stdin.close()

    async def _pump_output(self, process: asyncio.subprocess.Process) -> None:
        stream = process.stdout
        assert stream is not None
        while True:
            try:
                line = await stream.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; a final line may lack its newline
                if e.partial:
                    self._write(await self.handle_line(e.partial))
                break
            except asyncio.LimitOverrunError as e:
                logger.debug(f"Line from {self.argv[0]} exceeds {LINE_LIMIT} bytes, reading in pieces")
                line = await self._read_long_line(stream, e.consumed)
            self._write(await self.handle_line(line))

    async def _read_long_line(self, stream: asyncio.StreamReader, available: int) -> bytes:
        """Collect a line longer than the stream's buffer limit."""
        chunks = []
        while True:
            chunk = await stream.read(available)
            if not chunk:
                break
            chunks.append(chunk)
            try:
                chunks.append(await stream.readuntil(b"\n"))
                break
            except asyncio.IncompleteReadError as e:
                chunks.append(e.partial)
                break
            except asyncio.LimitOverrunError as e:
                available = e.consumed
        return b"".join(chunks)

    def _write(self, data: bytes) -> None:
        self.stdout.write(data)
        self.stdout.flush()


def _interactive() -> bool:
    return sys.stdout.isatty()


def run_proxy(
    command: Sequence[str] | str,
    authorizer: Authorizer | None = None,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> int:
    """Proxy ``command`` on this process's stdio and return its exit code.

    When our stdout is a terminal, review prompts read answers from
    ``/dev/tty``, since stdin belongs to the child. The terminal is
    closed again once the child exits.
    """
    prompter = None
    if authorizer is None:
        prompter = _open_tty_prompter() if _interactive() else None
        authorizer = Authorizer(prompter=prompter) if prompter else get_authorizer()

    interceptor = ProtocolInterceptor(command, authorizer=authorizer, stdin=stdin, stdout=stdout)
    try:
        return asyncio.run(interceptor.run())
    finally:
        if prompter is not None:
            prompter.stream.close()
