"""
Sandboxed shell command tool.

Only whitelisted read-only utilities may run. The command is spawned
without a shell inside the workspace, both output pipes are drained
concurrently into one buffer, and a single wall-clock timeout covers the
whole run.
"""
import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from localchat.config import settings
from localchat.exceptions import ToolError
from localchat.tools.base import BaseTool

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 1024

# sed commands that write files or run programs: w/W/e, optionally after an address
SED_ADDRESS = (
    r"(?:[\d$,~+!\s]"
    r"|/(?:[^/\\\n]|\\.)*/[IM]*"
    r"|\\([^\\\n])(?:(?!\1)[^\\\n]|\\.)*\1[IM]*)*"
)
SED_WRITE_COMMAND = re.compile(r"(?:^|[;{}\n])" + SED_ADDRESS + r"[wWe]")
# s/// commands whose flags include w (write) or e (execute)
SED_SUBST_WRITE_FLAG = re.compile(
    r"s([^\\\n])(?:(?!\1)[^\\]|\\.)*\1(?:(?!\1)[^\\]|\\.)*\1[gpiImM0-9]*[we]"
)
AWK_UNSAFE = re.compile(r"\bsystem\s*\(|\||\bprintf?\b[^;{}\n]*>")


def _long_option(arg: str, option: str) -> bool:
    """Whether ``arg`` names ``option`` or an unambiguous abbreviation of it."""
    name = arg.split("=", 1)[0]
    return len(name) >= 3 and option.startswith(name)


def sed_scripts(args: List[str]) -> List[str]:
    """
    Collect the scripts a sed invocation would run.

    Raises:
        ToolError: For in-place editing or script files
    """
    scripts: List[str] = []
    positional: List[str] = []
    explicit = False
    options_done = False
    expect: Optional[str] = None

    # Options may follow operands: GNU sed permutes its arguments
    for arg in args:
        if expect is not None:
            if expect == "script":
                scripts.append(arg)
            expect = None
        elif options_done or arg == "-" or not arg.startswith("-"):
            positional.append(arg)
        elif arg == "--":
            options_done = True
        elif arg.startswith("--"):
            name, has_value, value = arg.partition("=")
            if _long_option(name, "--in-place"):
                raise ToolError("In-place editing is not permitted")
            if name in ("--fi", "--fil", "--file"):
                raise ToolError("sed script files are not permitted")
            if _long_option(name, "--expression"):
                explicit = True
                if has_value:
                    scripts.append(value)
                else:
                    expect = "script"
            elif _long_option(name, "--line-length") and not has_value:
                expect = "value"
        else:
            letters = arg[1:]
            for index, letter in enumerate(letters):
                if letter == "i":
                    raise ToolError("In-place editing is not permitted")
                if letter == "f":
                    raise ToolError("sed script files are not permitted")
                if letter in ("e", "l"):
                    rest = letters[index + 1:]
                    if letter == "e":
                        explicit = True
                        if rest:
                            scripts.append(rest)
                    if not rest:
                        expect = "script" if letter == "e" else "value"
                    break

    if not explicit and positional:
        scripts.append(positional[0])
    return scripts


def awk_programs(args: List[str]) -> List[str]:
    """
    Collect the programs an awk invocation would run.

    Raises:
        ToolError: For program files or extension loading
    """
    programs: List[str] = []
    positional: List[str] = []
    explicit = False
    expect: Optional[str] = None

    for arg in args:
        if expect is not None:
            if expect == "program":
                programs.append(arg)
            expect = None
        elif positional or arg == "-" or not arg.startswith("-"):
            positional.append(arg)
        elif arg == "--":
            positional.append("")
        elif arg[:2] in ("-f", "-l", "-E") or _long_option(arg, "--file") \
                or _long_option(arg, "--load") or _long_option(arg, "--exec"):
            raise ToolError("awk program files and extensions are not permitted")
        elif arg[:2] == "-e" or _long_option(arg, "--source"):
            explicit = True
            value = arg[2:] if arg[:2] == "-e" else arg.partition("=")[2]
            if value:
                programs.append(value)
            else:
                expect = "program"
        elif arg[:2] in ("-F", "-v") and len(arg) == 2:
            expect = "value"

    positional = [arg for arg in positional if arg]
    if not explicit and positional:
        programs.append(positional[0])
    return programs


class _StreamPump:
    """One output pipe of the child process and whether it has closed."""

    def __init__(self, stream: asyncio.StreamReader, label: str):
        self.stream = stream
        self.label = label
        self.closed = False

    def read(self) -> "asyncio.Future[bytes]":
        return asyncio.ensure_future(self.stream.read(READ_CHUNK_BYTES))


class ShellExecTool(BaseTool):
    """Run simple read-only shell commands in the workspace."""

    def __init__(
        self,
        workspace_root: Optional[str] = None,
        whitelist: Optional[Iterable[str]] = None,
        timeout: Optional[float] = None,
        output_limit: Optional[int] = None,
    ):
        self.workspace_root = Path(workspace_root or settings.WORKSPACE_DIR)
        self.whitelist = frozenset(whitelist if whitelist is not None else settings.SHELL_WHITELIST)
        self.timeout = timeout or settings.SHELL_TIMEOUT
        self.output_limit = output_limit or settings.SHELL_OUTPUT_LIMIT

    @property
    def name(self) -> str:
        return "shell_exec"

    @property
    def description(self) -> str:
        return "Run simple read-only shell commands in the workspace"

    def get_input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "cmd": {"type": "string", "description": "Base command. Must be whitelisted."},
                "args": {"type": "array", "items": {"type": "string"}, "default": []},
            },
            "required": ["cmd"],
        }

    def _check_arguments(self, cmd: str, args: List[str]) -> None:
        if cmd == "sed":
            for script in sed_scripts(args):
                if SED_WRITE_COMMAND.search(script) or SED_SUBST_WRITE_FLAG.search(script):
                    raise ToolError("sed commands that write files or run programs are not permitted")
        elif cmd == "awk":
            for program in awk_programs(args):
                if AWK_UNSAFE.search(program):
                    raise ToolError("awk programs that run commands or redirect output are not permitted")

        root = self.workspace_root.resolve()
        for arg in args:
            if arg.startswith("-"):
                continue
            path = Path(arg)
            if ".." not in path.parts and not path.is_absolute():
                continue
            resolved = (root / path).resolve()
            inside = resolved == root or root in resolved.parents
            if not inside and (".." in path.parts or resolved.exists()):
                raise ToolError(f"Path outside workspace: {arg}")

    async def execute(self, arguments: Dict[str, Any], sink=None) -> str:
        cmd = arguments["cmd"]
        args = list(arguments.get("args") or [])

        if cmd not in self.whitelist:
            raise ToolError(f"Command not permitted: {cmd}")
        self._check_arguments(cmd, args)

        self.workspace_root.mkdir(parents=True, exist_ok=True)
        try:
            process = await asyncio.create_subprocess_exec(
                cmd,
                *args,
                cwd=str(self.workspace_root),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ToolError(f"spawn failed: {e}")

        try:
            output, capped = await asyncio.wait_for(
                self._run(process, sink), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            await self._kill(process)
            raise ToolError(f"Command timed out after {self.timeout:g} seconds")

        text = output.decode("utf-8", errors="replace").strip()
        if capped:
            text += f"\n[output truncated at {self.output_limit} bytes]"
        return text

    async def _run(self, process: asyncio.subprocess.Process, sink) -> Tuple[bytes, bool]:
        output, capped = await self._drain(process, sink)
        if capped:
            await self._kill(process)
        else:
            await process.wait()
        return output, capped

    async def _drain(self, process: asyncio.subprocess.Process, sink) -> Tuple[bytes, bool]:
        """
        Read stdout and stderr fairly into one buffer.

        Each pipe has at most one read outstanding. A pipe is marked closed
        on its end-of-stream; draining stops when both are closed or the
        byte cap is reached.
        """
        buffer = bytearray()
        pumps = [_StreamPump(process.stdout, "stdout"), _StreamPump(process.stderr, "stderr")]
        pending = {pump.read(): pump for pump in pumps}
        capped = False

        try:
            while pending and not capped:
                done, _ = await asyncio.wait(pending.keys(), return_when=asyncio.FIRST_COMPLETED)
                for future in done:
                    pump = pending.pop(future)
                    chunk = future.result()
                    if not chunk:
                        pump.closed = True
                        continue

                    buffer.extend(chunk)
                    if sink is not None:
                        sink.tool_stream(chunk.decode("utf-8", errors="replace"))

                    if len(buffer) >= self.output_limit:
                        capped = True
                    else:
                        pending[pump.read()] = pump
        finally:
            for future in pending:
                future.cancel()

        return bytes(buffer[:self.output_limit]), capped

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()
