import asyncio
import sys

import pytest

from orb.orb_config import EvalConfig, InterpreterProfile
from orb.orb_datatypes import ProcessSpawnFailure
from orb.orb_session import SessionRegistry, Channel, canonical_session_id


@pytest.mark.parametrize("sid,default,expected", [
    ("main", "raku", "*main*"),
    ("*main*", "raku", "*main*"),
    (None, "raku", "*raku*"),
    ("", "notes", "*notes*"),
    ("none", "raku", None),
    ("*", "raku", "***"),
])
def test_canonical_session_id(sid, default, expected):
    assert canonical_session_id(sid, default) == expected


def test_lookup_and_cleanse_on_absent_ids_are_quiet(config):
    reg = SessionRegistry(config)
    assert reg.lookup("ghost") is None
    reg.cleanse("ghost")
    assert reg.names() == []


def test_register_first_wins(config):
    reg = SessionRegistry(config)
    a = Channel("*a*", ["true"])
    b = Channel("*a*", ["true"])
    reg.register("a", a)
    reg.register("*a*", b)
    assert reg.lookup("a") is a
    assert reg.lookup("*a*") is a


@pytest.mark.asyncio
async def test_ensure_reuses_live_session(config):
    async with SessionRegistry(config) as reg:
        first = await reg.ensure("work")
        handle = reg.lookup(first)
        second = await reg.ensure("*work*")
        assert first == second == "*work*"
        assert reg.lookup("work") is handle
        assert handle.alive


@pytest.mark.asyncio
async def test_ensure_replaces_dead_session(config):
    async with SessionRegistry(config) as reg:
        sid = await reg.ensure("work")
        stale = reg.lookup(sid)
        stale.proc.kill()
        await stale.proc.wait()
        assert not stale.alive

        again = await reg.ensure("work")
        fresh = reg.lookup(again)
        assert again == sid
        assert fresh is not stale
        assert fresh.alive


@pytest.mark.asyncio
async def test_cleanse_removes_dead_entry(config):
    async with SessionRegistry(config) as reg:
        sid = await reg.ensure("x")
        ch = reg.lookup(sid)
        ch.proc.kill()
        await ch.proc.wait()
        reg.cleanse("x")
        assert reg.lookup("x") is None


@pytest.mark.asyncio
async def test_ensure_none_means_no_session(config):
    reg = SessionRegistry(config)
    assert await reg.ensure("none") is None
    assert reg.names() == []


@pytest.mark.asyncio
async def test_ensure_defaults_to_document_then_profile_name(config):
    async with SessionRegistry(config) as reg:
        assert await reg.ensure(None, default="notes") == "*notes*"
        assert await reg.ensure("") == "*fake*"
        assert reg.names() == ["*fake*", "*notes*"]


@pytest.mark.asyncio
async def test_remove_and_close_terminate_processes(config):
    reg = SessionRegistry(config)
    a = reg.lookup(await reg.ensure("a"))
    b = reg.lookup(await reg.ensure("b"))
    await reg.remove("a")
    assert not a.alive
    assert reg.names() == ["*b*"]
    await reg.close()
    assert not b.alive
    assert reg.names() == []


@pytest.mark.asyncio
async def test_missing_interpreter_is_a_spawn_failure():
    profile = InterpreterProfile(
        name="ghost",
        command=("orb-no-such-interpreter",),
        repl_command=("orb-no-such-interpreter",),
        sentinel_template="{{sentinel}}",
        wrapper_template="{{body}}",
    )
    reg = SessionRegistry(EvalConfig(profile=profile))
    with pytest.raises(ProcessSpawnFailure):
        await reg.ensure("x")
    assert reg.lookup("x") is None


@pytest.mark.asyncio
async def test_channel_transcript_and_echo(tmp_path):
    ch = Channel("*echo*", [sys.executable, "-u", "-c", "import sys\nfor l in sys.stdin: print(l.strip().upper())"], echo=True)
    await ch.start()
    try:
        start = ch.mark()
        await ch.send("hello\n")
        assert ch.text_since(start).startswith("hello\n")
    finally:
        await ch.close()
    assert "HELLO" in ch.transcript


def test_channel_trim_keeps_absolute_positions():
    ch = Channel("*t*", ["true"])
    ch._append("hello\n")
    mid = ch.mark()
    ch._append("world\n")
    ch.trim(mid)
    assert ch.transcript == "world\n"
    assert ch.mark() == 12
    assert ch.text_since(mid) == "world\n"
    assert ch.text_between(mid, mid + 5) == "world"
    # Trimming behind the current start, or past the end, changes nothing
    ch.trim(3)
    ch.trim(100)
    assert ch.transcript == ""
    assert ch.mark() == 12
    ch._append("again")
    assert ch.text_since(12) == "again"


@pytest.mark.asyncio
async def test_concurrent_ensure_starts_one_session(config, monkeypatch):
    closed = []
    real_close = Channel.close

    async def close(self):
        closed.append(self)
        await real_close(self)
    monkeypatch.setattr(Channel, "close", close)

    async with SessionRegistry(config) as reg:
        first, second = await asyncio.gather(reg.ensure("race"), reg.ensure("race"))
        assert first == second == "*race*"
        kept = reg.lookup("race")
        assert kept.alive
        assert len(closed) == 1
        assert closed[0] is not kept
        assert not closed[0].alive


@pytest.mark.asyncio
async def test_cleanse_releases_the_dead_process(config):
    async with SessionRegistry(config) as reg:
        sid = await reg.ensure("gone")
        ch = reg.lookup(sid)
        ch.proc.kill()
        await ch.proc.wait()
        reg.cleanse(sid)
        assert ch.proc._transport.is_closing()
