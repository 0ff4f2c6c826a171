import asyncio
from dataclasses import replace

import pytest

from orb.orb_config import EvalConfig
from orb.orb_datatypes import ProcessSpawnFailure, SentinelTimeout
from orb.orb_repl import ReplDriver
from orb.orb_session import SessionRegistry

SENTINEL = "__orb_babel_eoe__"


@pytest.fixture
def driver(config):
    return ReplDriver(SessionRegistry(config))


# --------------------------
# Extraction and selection
# --------------------------

def test_extract_strips_prompts_and_blank_edges(driver):
    segment = "> \n> 1\n> > 2\n> "
    assert driver.extract(segment, "print 1\nprint 2", 'say "x";', echo=False) == ["1", "2"]


def test_extract_removes_echoed_input(driver):
    probe = f'say "{SENTINEL}";'
    segment = f"print 1\nprint 2\n{probe}\n> 1\n> 2\n"
    assert driver.extract(segment, "print 1\nprint 2\n", probe, echo=True) == ["1", "2"]


def test_extract_keeps_output_that_merely_resembles_input(driver):
    probe = f'say "{SENTINEL}";'
    segment = f"print 1\n{probe}\n> print 1\n"
    assert driver.extract(segment, "print 1", probe, echo=True) == ["print 1"]


def test_select_modes():
    lines = ["first", "", "last", ""]
    assert ReplDriver.select(lines, "output") == "first\n\nlast\n"
    assert ReplDriver.select(lines, "value") == "last"
    assert ReplDriver.select([], "value") == ""


def test_find_sentinel_needs_a_whole_line(driver):
    assert driver.find_sentinel(f"> {SENTINEL}") is None
    assert driver.find_sentinel(f'say "{SENTINEL}";\n') is None
    text = f"> out\n> {SENTINEL}\n> "
    start, end = driver.find_sentinel(text)
    assert text[start:end] == f"> {SENTINEL}\n"


def test_probe_renders_sentinel(driver):
    assert driver.probe == f'say "{SENTINEL}";'


# --------------------------
# Against a live fake interpreter
# --------------------------

@pytest.mark.asyncio
async def test_value_mode_returns_last_line(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("s")
        out = await driver.evaluate(sid, "print 1\nprint 2\nprint $[3, 4]")
        assert out == "$[3, 4]"


@pytest.mark.asyncio
async def test_output_mode_returns_all_lines(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("s")
        out = await driver.evaluate(sid, "print a\nprint b", mode="output")
        assert out == "a\nb"


@pytest.mark.asyncio
async def test_leftover_output_is_flushed_between_calls(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("s")
        ch = reg.lookup(sid)
        # Unrelated output written straight to the channel, outside the protocol
        await ch.send("print stale\n")
        out = await driver.evaluate(sid, "print fresh", mode="output")
        assert out == "fresh"
        assert await driver.evaluate(sid, "print again") == "again"


@pytest.mark.asyncio
async def test_echoing_channel(config):
    cfg = replace(config, profile=replace(config.profile, echo=True))
    async with SessionRegistry(cfg) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("e")
        out = await driver.evaluate(sid, "print 10\nprint 20", mode="output")
        assert out == "10\n20"


@pytest.mark.asyncio
async def test_missing_sentinel_times_out(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("slow")
        with pytest.raises(SentinelTimeout) as ei:
            await driver.evaluate(sid, "hang", timeout=0.3)
        assert ei.value.session == "*slow*"


@pytest.mark.asyncio
async def test_dying_interpreter_reports_its_output(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("d")
        with pytest.raises(ProcessSpawnFailure) as ei:
            await driver.evaluate(sid, "die")
        assert "fatal: died" in str(ei.value)
        assert ei.value.returncode == 3


@pytest.mark.asyncio
async def test_unknown_mode_and_session(config):
    driver = ReplDriver(SessionRegistry(config))
    with pytest.raises(ValueError):
        await driver.evaluate("*s*", "print 1", mode="table")
    with pytest.raises(KeyError):
        await driver.evaluate("*never*", "print 1")


@pytest.mark.asyncio
async def test_waiting_is_cancellable(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("c")
        task = asyncio.create_task(driver.evaluate(sid, "hang", timeout=20))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_transcript_is_trimmed_after_each_evaluation(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        sid = await reg.ensure("long")
        ch = reg.lookup(sid)
        line = "x" * 200
        sizes = []
        for _ in range(50):
            assert await driver.evaluate(sid, f"print {line}") == line
            sizes.append(len(ch.transcript))
        assert max(sizes) < len(line)
        assert ch.mark() > 50 * len(line)


@pytest.mark.asyncio
async def test_distinct_sessions_run_concurrently(config):
    async with SessionRegistry(config) as reg:
        driver = ReplDriver(reg)
        a, b = await asyncio.gather(reg.ensure("a"), reg.ensure("b"))
        n = 25
        for _ in range(3):
            out_a, out_b = await asyncio.gather(
                driver.evaluate(a, "\n".join(["print a"] * n), mode="output"),
                driver.evaluate(b, "\n".join(["print b"] * n), mode="output"),
            )
            assert out_a == "\n".join(["a"] * n)
            assert out_b == "\n".join(["b"] * n)
