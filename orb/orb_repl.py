"""
Sentinel-synchronised evaluation over a session channel.

The channel is a plain byte stream with no message framing, so every
evaluation is bracketed by a probe statement that prints a fixed sentinel:

    1. flush   send the probe, wait for the sentinel (drains leftovers)
    2. submit  send the body followed by the probe
    3. wait    poll the transcript until the sentinel line shows up again
    4. extract keep the lines in between, minus echoes and prompts
    5. select  all lines for 'output', the last non-empty one for 'value'

Everything up to the end of the second sentinel line is trimmed from the
transcript once it has been extracted.

At most one evaluation may be in flight per session; nothing here locks.
"""
import asyncio
import logging
import re
from typing import List, Optional, Tuple

from orb.orb_config import EvalConfig, render_template
from orb.orb_datatypes import ProcessSpawnFailure, SentinelTimeout
from orb.orb_session import Channel, SessionRegistry

logger = logging.getLogger("orb.repl")

RESULT_MODES = ('value', 'output')


class ReplDriver:

    def __init__(self, registry: SessionRegistry, config: Optional[EvalConfig] = None):
        self.registry = registry
        self.config = config or registry.config
        prompt = self.config.profile.prompt
        self._prompt_re = re.compile(f"^(?:{prompt})+") if prompt else None

    @property
    def probe(self) -> str:
        return render_template(self.config.profile.sentinel_template, sentinel=self.config.sentinel)

    async def evaluate(self, session_id: str, body: str, mode: str = 'value',
                       timeout: Optional[float] = None) -> str:
        """Run `body` in an already ensured session and return the selected text."""
        if mode not in RESULT_MODES:
            raise ValueError(f"unknown result mode {mode!r}; expected one of {RESULT_MODES}")
        channel = self.registry.lookup(session_id)
        if channel is None:
            raise KeyError(f"no session {session_id!r}; call ensure() first")
        limit = self.config.timeout if timeout is None else timeout
        probe = self.probe

        # 1. Flush
        start = channel.mark()
        await channel.send(probe + "\n")
        flushed, _ = await self._wait_for_sentinel(channel, start, limit)
        logger.debug("%s flushed at %d", channel.name, flushed)

        # 2. Submit
        await channel.send(body.rstrip("\n") + "\n" + probe + "\n")

        # 3. Wait
        done, sentinel_at = await self._wait_for_sentinel(channel, flushed, limit)

        # 4. Extract, 5. Select
        segment = channel.text_between(flushed, sentinel_at)
        channel.trim(done)
        lines = self.extract(segment, body, probe, channel.echo)
        return self.select(lines, mode)

    async def _wait_for_sentinel(self, channel: Channel, pos: int, limit: float) -> Tuple[int, int]:
        try:
            return await asyncio.wait_for(self._poll(channel, pos), limit)
        except asyncio.TimeoutError:
            logger.warning("no sentinel from %s after %ss", channel.name, limit)
            raise SentinelTimeout(channel.name, limit) from None

    async def _poll(self, channel: Channel, pos: int) -> Tuple[int, int]:
        """Returns (end of the sentinel line, start of the sentinel line)."""
        while True:
            dead = not channel.alive
            if dead:
                await channel.wait_drained()
            found = self.find_sentinel(channel.text_since(pos))
            if found is not None:
                line_start, line_end = found
                return pos + line_end, pos + line_start
            if dead:
                raise ProcessSpawnFailure(channel.command, channel.returncode, channel.text_since(pos))
            await asyncio.sleep(self.config.poll_interval)

    def find_sentinel(self, text: str) -> Optional[Tuple[int, int]]:
        """Offsets of the first complete line that reads as the sentinel, if any."""
        offset = 0
        for line in text.splitlines(keepends=True):
            end = offset + len(line)
            if line.endswith("\n") and self._clean(line) == self.config.sentinel:
                return offset, end
            offset = end
        return None

    def _clean(self, line: str) -> str:
        line = line.lstrip()
        if self._prompt_re is not None:
            line = self._prompt_re.sub("", line)
        return line.strip()

    def extract(self, segment: str, body: str, probe: str, echo: bool) -> List[str]:
        """Trim prompts, echoed input and the probe's own echo from a captured segment."""
        lines = [self._clean(line) for line in segment.splitlines()]
        if echo:
            expected = [l.strip() for l in body.rstrip("\n").splitlines()] + [probe.strip()]
            i = 0
            while i < len(lines) and i < len(expected) and lines[i] == expected[i]:
                i += 1
            lines = lines[i:]
        # Prompt residue leaves blank lines at both ends
        while lines and not lines[0]:
            lines.pop(0)
        while lines and not lines[-1]:
            lines.pop()
        return lines

    @staticmethod
    def select(lines: List[str], mode: str) -> str:
        if mode == 'output':
            return "\n".join(lines)
        for line in reversed(lines):
            if line:
                return line
        return ""
