"""
External process helpers shared by the compiler and bundler services.

Tools are located the same way everywhere: an explicitly configured path,
then the project's ``node_modules/.bin``, then ``PATH``.
"""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..core.exceptions import ToolNotFoundError
from ..core.logging import get_logger, log_subprocess_line

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Exit status and captured output of an external command."""

    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def find_tool(
    tool_name: str,
    configured: Path | None = None,
    project_root: Path | None = None,
    install_hint: str = "",
) -> Path:
    """Find a tool in the configured location, node_modules/.bin or PATH.

    Raises:
        ToolNotFoundError: If the tool cannot be found anywhere.
    """
    if configured is not None:
        if configured.exists():
            return configured
        raise ToolNotFoundError(
            message=f"Configured tool path does not exist: {configured}",
            tool_name=tool_name,
            expected_path=str(configured),
            install_hint=install_hint,
        )

    if project_root is not None:
        local_bin = project_root / "node_modules" / ".bin" / tool_name
        if local_bin.exists():
            return local_bin

    tool_path = shutil.which(tool_name)
    if tool_path:
        return Path(tool_path)

    raise ToolNotFoundError(
        message=f"Tool not found: {tool_name}",
        tool_name=tool_name,
        expected_path="PATH, node_modules/.bin or configured location",
        install_hint=install_hint or f"Install {tool_name} and add it to PATH",
    )


async def run_command(
    cmd: list[str],
    cwd: Path | None = None,
    tool: str = "",
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> CommandResult:
    """Run a command asynchronously, streaming its output to the log.

    The process is killed if it outlives ``timeout``; the result is then
    marked ``timed_out``.
    """
    tool = tool or Path(cmd[0]).name
    logger.info("Running command", command=" ".join(cmd), cwd=str(cwd) if cwd else None)

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=env,
    )

    stdout_lines: list[str] = []
    stderr_lines: list[str] = []

    async def read_stream(stream: asyncio.StreamReader, lines: list[str], stream_name: str) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            decoded = line.decode("utf-8", errors="replace").rstrip()
            lines.append(decoded)
            log_subprocess_line(logger, tool, stream_name, decoded)

    timed_out = False
    try:
        await asyncio.wait_for(
            asyncio.gather(
                read_stream(process.stdout, stdout_lines, "stdout"),  # type: ignore[arg-type]
                read_stream(process.stderr, stderr_lines, "stderr"),  # type: ignore[arg-type]
                process.wait(),
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        timed_out = True
        process.kill()
        await process.wait()

    returncode = process.returncode if process.returncode is not None else -1
    logger.info(
        "Command completed",
        tool=tool,
        returncode=returncode,
        timed_out=timed_out,
        stdout_lines=len(stdout_lines),
        stderr_lines=len(stderr_lines),
    )
    return CommandResult(
        returncode=returncode,
        stdout="\n".join(stdout_lines),
        stderr="\n".join(stderr_lines),
        timed_out=timed_out,
    )
