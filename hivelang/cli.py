import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from .ai_providers import DryRunProvider, select_provider
from .api import build_store, compile_source, diagnose, load
from .builtin_tools import default_registry
from .config import Settings
from .decisions import LLMDecisionSource
from .errors import CompileError, HiveLangError
from .log import configure_logging, enable_console_tracing
from .runtime import ReActEngine
from .tools import ToolContext


def find_source(target: str) -> Optional[Path]:
    for p in (Path(target), Path(f"{target}.hive"), Path("examples") / target, Path("examples") / f"{target}.hive"):
        if p.exists() and p.is_file():
            return p
    return None


def _source_or_exit(target: str) -> Path:
    path = find_source(target)
    if path is None:
        print(f"Error: could not find HiveLang file for '{target}'")
        sys.exit(1)
    return path


def _provider(settings: Settings, dry_run: bool):
    if dry_run:
        return DryRunProvider()
    return select_provider(settings.ai_provider, settings.ai_model)


def cmd_check(args, settings: Settings) -> int:
    path = _source_or_exit(args.name)
    tools = None if args.syntax_only else default_registry(DryRunProvider())
    if tools is not None and args.tools:
        tools = tools.subset(n.strip() for n in args.tools.split(",") if n.strip())
    report = diagnose(path, tools)
    for line in report.errors:
        print(f"{path}: error: {line}")
    for line in report.warnings:
        print(f"{path}: warning: {line}")
    print("OK" if report.valid else f"{len(report.errors)} error(s)")
    return 0 if report.valid else 1


def cmd_compile(args, settings: Settings) -> int:
    path = _source_or_exit(args.name)
    result = compile_source(path, default_registry(DryRunProvider()))
    if args.json:
        print(json.dumps(result, indent=2, default=str))
    else:
        for line in result["errors"]:
            print(f"error: {line}")
        for line in result["summary"]:
            print(line)
    return 0 if result["valid"] else 1


def _print_result(result) -> None:
    for line in result.output:
        print(line)
    if not result.success:
        print(f"[{result.status.value}] {'; '.join(result.errors) or result.final_answer}")


def cmd_run(args, settings: Settings) -> int:
    path = _source_or_exit(args.name)
    provider = _provider(settings, args.dry_run)
    registry = default_registry(provider, settings.temperature)
    try:
        program = load(path, registry)
    except CompileError as e:
        for d in e.diagnostics:
            print(d)
        return 1
    context = ToolContext.create(bot_id=program.bot.name, store=build_store(settings))
    engine = ReActEngine(registry, settings=settings)
    result = asyncio.run(engine.run_program(program, context, input=args.input, event=args.event,
                                            max_steps=args.max_steps))
    _print_result(result)
    return 0 if result.success else 1


def cmd_ask(args, settings: Settings) -> int:
    provider = _provider(settings, args.dry_run)
    if provider is None:
        print("Error: no AI provider configured (set OPENAI_API_KEY or ANTHROPIC_API_KEY)")
        return 1
    registry = default_registry(provider, settings.temperature)
    engine = ReActEngine(registry, LLMDecisionSource(provider, temperature=settings.temperature), settings)
    context = ToolContext.create(store=build_store(settings))
    result = asyncio.run(engine.run(args.task, context, max_steps=args.max_steps))
    if args.trace:
        for step in result.steps:
            print(json.dumps(step.to_dict(), default=str))
    print(result.final_answer)
    return 0 if result.success else 1


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="hive", description="HiveLang bot compiler and runner")
    subparsers = parser.add_subparsers(dest="command")

    check_parser = subparsers.add_parser("check", help="Validate a .hive file")
    check_parser.add_argument("name", help="Name or path of the .hive file")
    check_parser.add_argument("--syntax-only", action="store_true", help="Skip tool checks")
    check_parser.add_argument("--tools", default=None, help="Comma-separated builtin tools the bot may use")

    compile_parser = subparsers.add_parser("compile", help="Print the compiled steps")
    compile_parser.add_argument("name")
    compile_parser.add_argument("--json", action="store_true", help="Emit the compile result as JSON")

    run_parser = subparsers.add_parser("run", help="Run a bot on one input message")
    run_parser.add_argument("name")
    run_parser.add_argument("--input", default="", help="Message passed to the trigger as 'input'")
    run_parser.add_argument("--event", default=None, help="Trigger to run (default: the first)")
    run_parser.add_argument("--max-steps", type=int, default=None)
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate AI replies")

    ask_parser = subparsers.add_parser("ask", help="Free-form ReAct run with the builtin tools")
    ask_parser.add_argument("task")
    ask_parser.add_argument("--max-steps", type=int, default=None)
    ask_parser.add_argument("--trace", action="store_true", help="Print every ReAct step")
    ask_parser.add_argument("--dry-run", action="store_true", help="Simulate AI replies")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    try:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        if settings.trace:
            enable_console_tracing()
        handler = {"check": cmd_check, "compile": cmd_compile, "run": cmd_run, "ask": cmd_ask}[args.command]
        return handler(args, settings)
    except HiveLangError as e:
        logger.debug("command failed: {!r}", e)
        print(f"[Error] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
