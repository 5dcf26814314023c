#!/usr/bin/env python
import asyncio
import json
import sys
import argparse
from pathlib import Path

from loguru import logger

from hivelang.ai_providers import DryRunProvider
from hivelang.bridge import run_agentic, run_program, validate_program
from hivelang.compiler import compile_source
from hivelang.config import Settings
from hivelang.errors import CompileError, HiveLangError
from hivelang.macros import MacroExpander
from hivelang.memory import JsonFileMemoryStore
from hivelang.react import describe


def find_source(target: str) -> Path:
    potential_paths = [
        Path(target),
        Path(f"{target}.hive"),
        Path("examples") / target,
        Path("examples") / f"{target}.hive",
    ]
    for p in potential_paths:
        if p.exists() and p.is_file():
            return p
    raise HiveLangError(
        f"Could not find hive file for '{target}' (checked: {', '.join(str(p) for p in potential_paths)})"
    )


def configure_logging(verbose: bool, settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else settings.log_level)


def enable_tracing() -> None:
    from opentelemetry import trace
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def parse_input(raw):
    if raw is None:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def cmd_check(args, macros) -> int:
    report = validate_program(find_source(args.file), macros=macros)
    for d in report.diagnostics:
        print(str(d))
    if report.valid:
        print(f"OK ({len(report.warnings)} warnings)")
        return 0
    return 1


def cmd_compile(args, macros) -> int:
    result = compile_source(find_source(args.file), macros=macros, model=args.model)
    for d in result.warnings:
        print(str(d), file=sys.stderr)
    program = result.raise_for_errors()
    print(program.to_json())
    return 0


def cmd_run(args, macros) -> int:
    path = find_source(args.file)
    memory = None
    if args.memory is not None:
        name = compile_source(path, macros=macros).program.name
        memory = JsonFileMemoryStore(name, base_path=args.memory or None)
    result = asyncio.run(run_program(path, input=parse_input(args.input), memory=memory, macros=macros))
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
    return 0 if result.success else 1


def cmd_agent(args, macros) -> int:
    provider = DryRunProvider() if args.dry_run else None
    result = asyncio.run(
        run_agentic(
            find_source(args.file),
            input=parse_input(args.input),
            provider=provider,
            bot_prompt=args.bot_prompt,
            macros=macros,
            model=args.model,
        )
    )
    print(describe(result))
    return 0 if result.success else 1


def main(argv=None):
    parser = argparse.ArgumentParser(description="HiveLang CLI - compile and run bots")
    parser.add_argument("--macros", metavar="DIR", help="Directory of *.hive files usable with 'use <name>'")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging on stderr")
    parser.add_argument("--trace", action="store_true", help="Print OpenTelemetry spans to the console")
    subparsers = parser.add_subparsers(dest="command")

    check_parser = subparsers.add_parser("check", help="Report diagnostics for a .hive file")
    check_parser.add_argument("file")

    compile_parser = subparsers.add_parser("compile", help="Print the compiled program as JSON")
    compile_parser.add_argument("file")
    compile_parser.add_argument("--model", default=None, help="Model recorded in the compiled program")

    run_parser = subparsers.add_parser("run", help="Run a bot with the step interpreter")
    run_parser.add_argument("file")
    run_parser.add_argument("--input", default=None, help="Input as JSON (plain text is passed as a string)")
    run_parser.add_argument(
        "--memory", metavar="PATH", nargs="?", const="", default=None,
        help="Persist memory in PATH (HIVELANG_STATE_DIR when no path is given)",
    )

    agent_parser = subparsers.add_parser("agent", help="Run a bot through the reasoning engine")
    agent_parser.add_argument("file")
    agent_parser.add_argument("--input", default=None, help="Input as JSON (plain text is passed as a string)")
    agent_parser.add_argument("--bot-prompt", default=None, help="Extra instructions appended to the system prompt")
    agent_parser.add_argument("--dry-run", action="store_true", help="Answer offline without calling a model")
    agent_parser.add_argument("--model", default=None, help="Model to request instead of the provider default")

    args = parser.parse_args(argv)
    configure_logging(args.verbose, Settings.from_env())
    if args.trace:
        enable_tracing()

    commands = {"check": cmd_check, "compile": cmd_compile, "run": cmd_run, "agent": cmd_agent}
    if args.command not in commands:
        parser.print_help()
        return 1

    try:
        macros = MacroExpander.from_directory(args.macros) if args.macros else None
        return commands[args.command](args, macros)
    except CompileError as e:
        for d in e.diagnostics:
            print(str(d), file=sys.stderr)
        print(f"[Error] {e}", file=sys.stderr)
        return 1
    except HiveLangError as e:
        print(f"[Error] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
