"""
Interactive channels to long-lived interpreter processes, and the registry
that names them.

A Channel owns one process and a transcript of what was read from its output
(and, for echoing channels, what was written to it). Positions are absolute,
so a mark stays valid after the REPL driver trims away the text before it.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Dict, List, Optional, Sequence as Seq

from orb.orb_config import EvalConfig, InterpreterProfile
from orb.orb_datatypes import ProcessSpawnFailure

logger = logging.getLogger("orb.session")

SESSION_MARK = "*"
NO_SESSION = "none"


def canonical_session_id(session_id: Optional[str], default: str = "raku") -> Optional[str]:
    """Wrap a session id in boundary markers; returns None for the special id 'none'."""
    sid = session_id if session_id else default
    if sid == NO_SESSION:
        return None
    if len(sid) >= 2 and sid.startswith(SESSION_MARK) and sid.endswith(SESSION_MARK):
        return sid
    return f"{SESSION_MARK}{sid}{SESSION_MARK}"


class Channel:
    """A running interpreter process plus its output transcript."""

    KILL_GRACE_SECONDS = 2.0

    def __init__(self, name: str, command: Seq[str], *, echo: bool = False):
        self.name = name
        self.command = list(command)
        self.echo = echo
        self.proc: Optional[asyncio.subprocess.Process] = None
        self._chunks: List[str] = []
        self._size = 0
        self._base = 0
        self._reader: Optional[asyncio.Task] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    async def start(self):
        try:
            self.proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ProcessSpawnFailure(self.command, None, str(e)) from e
        logger.debug("started %s (pid %s): %s", self.name, self.proc.pid, " ".join(self.command))
        self._reader = asyncio.create_task(self._read_output())

    async def _read_output(self):
        proc = self.proc
        while True:
            data = await proc.stdout.read(4096)
            if not data:
                break
            self._append(self._decoder.decode(data))
        self._append(self._decoder.decode(b"", final=True))
        await proc.wait()
        logger.debug("%s exited with status %s", self.name, proc.returncode)

    def _append(self, text: str):
        if text:
            self._chunks.append(text)
            self._size += len(text)

    @property
    def alive(self) -> bool:
        return self.proc is not None and self.proc.returncode is None

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode if self.proc is not None else None

    @property
    def transcript(self) -> str:
        if len(self._chunks) > 1:
            self._chunks = ["".join(self._chunks)]
        return self._chunks[0] if self._chunks else ""

    def mark(self) -> int:
        """Current end of the transcript."""
        return self._size

    def text_since(self, pos: int) -> str:
        return self.transcript[max(pos - self._base, 0):]

    def text_between(self, start: int, end: int) -> str:
        return self.transcript[max(start - self._base, 0):max(end - self._base, 0)]

    def trim(self, pos: int):
        """Drop the transcript before absolute position `pos`."""
        cut = min(pos, self._size) - self._base
        if cut <= 0:
            return
        self._chunks = [self.transcript[cut:]]
        self._base += cut

    async def send(self, text: str):
        if not self.alive:
            raise ProcessSpawnFailure(self.command, self.returncode, self.transcript[-2000:])
        if self.echo:
            self._append(text)
        self.proc.stdin.write(text.encode("utf-8"))
        await self.proc.stdin.drain()

    async def wait_drained(self):
        """Wait until everything the process wrote has reached the transcript."""
        if self._reader is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._reader), self.KILL_GRACE_SECONDS)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                pass

    def discard(self):
        """Let go of a channel whose process is already gone."""
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
        self._close_transport()

    def _close_transport(self):
        transport = getattr(self.proc, "_transport", None)
        if transport is not None:
            transport.close()

    async def close(self):
        """Close stdin and give the process a grace period before terminating, then killing it."""
        proc = self.proc
        if proc is not None and proc.returncode is None:
            try:
                proc.stdin.close()
            except (BrokenPipeError, ConnectionResetError):
                pass
            for stop in (None, proc.terminate, proc.kill):
                try:
                    if stop is not None:
                        stop()
                    await asyncio.wait_for(proc.wait(), self.KILL_GRACE_SECONDS)
                    break
                except ProcessLookupError:
                    break
                except asyncio.TimeoutError:
                    continue
        if self._reader is not None:
            try:
                await asyncio.wait_for(self._reader, self.KILL_GRACE_SECONDS)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                pass
        self._close_transport()
        logger.debug("closed %s", self.name)


class SessionRegistry:
    """Maps canonical session ids to live channels."""

    def __init__(self, config: Optional[EvalConfig] = None):
        self.config = config or EvalConfig()
        self._sessions: Dict[str, Channel] = {}

    @property
    def profile(self) -> InterpreterProfile:
        return self.config.profile

    def _key(self, session_id: Optional[str]) -> Optional[str]:
        return canonical_session_id(session_id, self.profile.name)

    def lookup(self, session_id: Optional[str]) -> Optional[Channel]:
        key = self._key(session_id)
        if key is None:
            return None
        return self._sessions.get(key)

    def register(self, session_id: str, channel: Channel) -> Optional[Channel]:
        """First registration wins; returns the channel now held under the id."""
        key = self._key(session_id)
        if key is None:
            return None
        return self._sessions.setdefault(key, channel)

    def cleanse(self, session_id: Optional[str]):
        """Drop the entry if its process has died. Absent ids are fine."""
        key = self._key(session_id)
        channel = self._sessions.get(key) if key else None
        if channel is None or channel.alive:
            return
        logger.warning("session %s is dead (status %s); removing it", key, channel.returncode)
        channel.discard()
        del self._sessions[key]

    async def ensure(self, session_id: Optional[str] = None, *, default: Optional[str] = None) -> Optional[str]:
        """
        Return the canonical id of a live session, starting one if needed.

        An empty id falls back to `default` (the caller's document name) and
        then to the profile name. 'none' returns None: no session.
        """
        key = canonical_session_id(session_id, default or self.profile.name)
        if key is None:
            return None
        self.cleanse(key)
        if key not in self._sessions:
            channel = Channel(key, self.profile.repl_command, echo=self.profile.echo)
            await channel.start()
            if self.register(key, channel) is not channel:
                # Another ensure for the same id got there while this one was starting
                await channel.close()
        return key

    def names(self) -> List[str]:
        return sorted(self._sessions)

    async def remove(self, session_id: str):
        key = self._key(session_id)
        channel = self._sessions.pop(key, None) if key else None
        if channel is not None:
            await channel.close()

    async def close(self):
        channels = list(self._sessions.values())
        self._sessions.clear()
        for channel in channels:
            await channel.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False
