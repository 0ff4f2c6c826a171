"""
One-shot evaluation in a fresh interpreter process.
"""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from contextlib import contextmanager
from typing import Optional, Sequence

from orb.orb_config import EvalConfig, render_template
from orb.orb_datatypes import ProcessSpawnFailure, EvaluationTimeout

logger = logging.getLogger("orb.external")


async def run_process(command: Sequence[str], source: str, timeout: Optional[float] = None) -> str:
    """Feed `source` to `command` on stdin and return its stdout.

    Note: ``asyncio.create_subprocess_exec`` works in bytes; output is decoded
    as UTF-8 with replacement.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ProcessSpawnFailure(command, None, str(e)) from e
    try:
        stdout_b, stderr_b = await asyncio.wait_for(process.communicate(source.encode("utf-8")), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise EvaluationTimeout(f"{command[0]} did not finish within {timeout}s", timeout) from None
    stdout = stdout_b.decode("utf-8", errors="replace") if stdout_b is not None else ""
    stderr = stderr_b.decode("utf-8", errors="replace") if stderr_b is not None else ""
    if process.returncode != 0:
        logger.debug("%s exited with status %s", command[0], process.returncode)
        raise ProcessSpawnFailure(command, process.returncode, stderr)
    return stdout


def quote_path(path: str) -> str:
    """A single-quoted literal for `path`; only backslash and quote are escaped."""
    return "'" + path.replace("\\", "\\\\").replace("'", "\\'") + "'"


@contextmanager
def result_file(prefix: str = "orb-"):
    """A fresh, uniquely named path that is removed on every exit path."""
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=".out")
    os.close(fd)
    try:
        yield path
    finally:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


class ExternalEvaluator:
    """Runs a body once, either for its stdout or for its returned value."""

    def __init__(self, config: Optional[EvalConfig] = None):
        self.config = config or EvalConfig()

    def wrap(self, body: str, path: str) -> str:
        """Render the profile's wrapper program around `body`."""
        indented = "\n".join(("    " + line) if line.strip() else line for line in body.splitlines())
        return render_template(
            self.config.profile.wrapper_template,
            body=body,
            indented_body=indented,
            path=path,
            quoted_path=quote_path(path),
        )

    async def evaluate(self, body: str, mode: str = 'value', timeout: Optional[float] = None) -> str:
        profile = self.config.profile
        limit = self.config.timeout if timeout is None else timeout
        if mode == 'output':
            return await run_process(profile.command, body, limit)
        with result_file() as path:
            program = self.wrap(body, path)
            logger.debug("running %s with result file %s", profile.name, path)
            await run_process(profile.command, program, limit)
            with open(path, "r", encoding="utf-8", errors="replace") as f:
                return f.read()
