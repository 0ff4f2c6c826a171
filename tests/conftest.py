import sys
import textwrap

import pytest

from orb.orb_config import EvalConfig, InterpreterProfile

# A tiny line-oriented interpreter: prompts with "> ", understands
#   say "X";   print X   die   hang
FAKE_REPL = textwrap.dedent('''
    import sys, time
    while True:
        sys.stdout.write("> ")
        sys.stdout.flush()
        line = sys.stdin.readline()
        if not line:
            break
        line = line.strip()
        if line.startswith('say "') and line.endswith('";'):
            print(line[5:-2])
        elif line.startswith("print "):
            print(line[6:])
        elif line == "die":
            sys.stderr.write("fatal: died\\n")
            sys.stderr.flush()
            sys.exit(3)
        elif line == "hang":
            time.sleep(30)
        sys.stdout.flush()
''')

# Formats a Python return value the way the interpreter literal grammar expects.
PY_WRAPPER = textwrap.dedent('''
    def main():
    {{indented_body}}

    def _fmt(v, top=False):
        if isinstance(v, dict):
            return "{" + ", ".join(str(k) + " => " + _fmt(x, True) for k, x in v.items()) + "}"
        if isinstance(v, (list, tuple)):
            return ("$[" if top else "[") + ", ".join(_fmt(x) for x in v) + "]"
        if isinstance(v, str):
            return '"' + v.replace('"', '\\\\"') + '"'
        return str(v)

    with open({{quoted_path}}, "w") as f:
        f.write(_fmt(main(), True) + "\\n")
''')


@pytest.fixture
def fake_repl(tmp_path):
    script = tmp_path / "fake_repl.py"
    script.write_text(FAKE_REPL, encoding="utf-8")
    return script


@pytest.fixture
def profile(fake_repl):
    return InterpreterProfile(
        name="fake",
        command=(sys.executable, "-"),
        repl_command=(sys.executable, "-u", str(fake_repl)),
        sentinel_template='say "{{sentinel}}";',
        wrapper_template=PY_WRAPPER,
        prompt="> ",
    )


@pytest.fixture
def config(profile):
    return EvalConfig(profile=profile, timeout=10.0, poll_interval=0.01)
