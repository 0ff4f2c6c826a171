import argparse
import asyncio
import logging
import sys
from pathlib import Path

from orb.orb_config import EvalConfig, load_config
from orb.orb_printer import Printer
from orb.orb_runtime import Evaluator

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def parse_args(argv):
    ap = argparse.ArgumentParser(prog="orb", description="Evaluate code in an external interpreter and print the structured result.")
    ap.add_argument("file", nargs="?", help="source file to evaluate (default: stdin)")
    ap.add_argument("--session", default=None, help="session id; 'none' for a one-shot process")
    ap.add_argument("--results", choices=("value", "output"), default="value")
    ap.add_argument("--config", default=None, help="YAML config file")
    ap.add_argument("--verbose", action="store_true")
    return ap.parse_args(argv)

def print_result(result, printer: Printer) -> bool:
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return False
    if result.mode == 'output':
        print(result.raw)
    elif result.value is not None:
        print(printer.pformat(result.value))
    return True

async def run_file(evaluator: Evaluator, args) -> int:
    """Evaluate a whole file (or stdin) once and print the result."""
    if args.file:
        p = Path(args.file)
        try:
            source = p.read_text(encoding="utf-8")
        except FileNotFoundError:
            print(f"Error: file not found: {args.file}", file=sys.stderr)
            return 1
        document = p.stem
    else:
        source = sys.stdin.read()
        document = None
    result = await evaluator.evaluate(source, session=args.session, mode=args.results, default_session=document)
    return 0 if print_result(result, Printer()) else 1

async def main(argv=None) -> int:
    """Run a file when provided, otherwise loop over lines against a session."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    config = load_config(args.config) if args.config else EvalConfig()

    async with Evaluator(config) as evaluator:
        if args.file or args.session is None or args.session == "none":
            return await run_file(evaluator, args)

        print(f"orb session {args.session or config.profile.name} ({config.profile.name})")
        print("Type 'exit' or press Ctrl+D to quit.")
        printer = Printer()

        # REPL Loop
        while True:
            try:
                raw = await ainput(">> ")
                if raw == "":
                    raise EOFError
                line = raw.strip()

                if not line:
                    continue
                if line == "exit":
                    break

                result = await evaluator.evaluate(line, session=args.session, mode=args.results)
                print_result(result, printer)

            except EOFError:
                print("\nExiting.")
                break
    return 0

if __name__ == "__main__":
    try:
        raise SystemExit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nExiting.")
