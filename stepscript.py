"""StepScript entry point and REPL wiring."""

from __future__ import annotations
import argparse
import logging
import os
import sys
import time
from typing import Dict, List, Optional

from control import CONTROL_TYPE, ControlInterpreter
from engine import METADATA_KEY, Engine
from extensions import RuntimeServices, ScriptExtensionError, load_runtime_services
from interpreter import Interpreter, ScriptFault, ScriptRunawayError, ScriptRuntimeError, TracebackFormatter
from lexer import ScriptError, ScriptParseError
from parser import read_program
from program import Program


def configure_logging(level: str = "warning", stream=None) -> None:
    level_value = getattr(logging, level.strip().upper(), logging.WARNING)
    logging.basicConfig(
        level=level_value,
        format="%(levelname)s %(name)s %(message)s",
        stream=stream or sys.stderr,
    )


def _configure_interpreter(interpreter: Interpreter, *, verbose: bool, wait_ticks: bool) -> None:
    interpreter.verbose = verbose
    interpreter.logger.verbose = verbose
    if isinstance(interpreter, ControlInterpreter):
        interpreter.wait_is_break_count = wait_ticks


def load_program(text: str, filename: str, services: RuntimeServices, default_type: str) -> Program:
    """Parse a script, validating it against its dialect's descriptor.

    The dialect comes from the script's ``type`` metadata, so the text is
    read once unchecked to find it, then again with the descriptor.
    """
    probe = read_program(text, filename)
    type_name = probe.get_metadata(METADATA_KEY) or default_type
    dialect = services.dialect_registry.get(type_name)
    if dialect.descriptor is None:
        program = probe
    else:
        program = read_program(text, filename, [dialect.descriptor])
    if program.get_metadata(METADATA_KEY) is None:
        program.set_metadata(METADATA_KEY, type_name)
    return program


def _script_names(filenames: List[str], source_mode: bool) -> List[str]:
    """Engine names for the given programs: file stems, or main, main2, ... for source text."""
    if source_mode:
        return ["main" if i == 0 else f"main{i + 1}" for i in range(len(filenames))]
    names: List[str] = []
    seen: Dict[str, str] = {}
    for filename in filenames:
        name = os.path.splitext(os.path.basename(filename))[0]
        if name.lower() in seen:
            raise ScriptError(f"Scripts {seen[name.lower()]} and {filename} share the name '{name}'")
        seen[name.lower()] = filename
        names.append(name)
    return names


class CliEngine(Engine):
    def __init__(
        self,
        *,
        runaway_limit: int = 0,
        verbose: bool = False,
        wait_ticks: bool = False,
        traceback_json: bool = False,
    ) -> None:
        super().__init__(runaway_limit=runaway_limit)
        self.verbose = verbose
        self.wait_ticks = wait_ticks
        self.traceback_json = traceback_json
        self.failures = 0

    def instantiated_script(self, interpreter: Interpreter) -> None:
        super().instantiated_script(interpreter)
        _configure_interpreter(interpreter, verbose=self.verbose, wait_ticks=self.wait_ticks)

    def error_runaway_script(self, exception: ScriptRunawayError) -> None:
        super().error_runaway_script(exception)
        self._report(exception)

    def error_runtime_script(self, exception: ScriptRuntimeError) -> None:
        super().error_runtime_script(exception)
        self._report(exception)

    def error_script(self, interpreter: Interpreter, exception: Exception) -> None:
        super().error_script(interpreter, exception)
        self.failures += 1
        print(f"InternalError: {exception}", file=sys.stderr)

    def _report(self, error: ScriptFault) -> None:
        self.failures += 1
        if error.interpreter is None:
            print(f"{error.__class__.__name__}: {error.message}", file=sys.stderr)
            return
        formatter = TracebackFormatter(error.interpreter)
        print(formatter.format_text(error, verbose=self.verbose), file=sys.stderr)
        if self.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)


def run_repl(services: RuntimeServices, type_name: str, *, verbose: bool, runaway_limit: int) -> int:
    print(f"StepScript REPL ({type_name}). Enter commands, blank line to run buffer.")
    dialect = services.dialect_registry.get(type_name)
    descriptors = [dialect.descriptor] if dialect.descriptor is not None else []
    interpreter: Optional[Interpreter] = None
    buffer: List[str] = []

    while True:
        prompt = ">>> " if not buffer else "..> "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        if line.strip() != "":
            buffer.append(line)
            continue
        if not buffer:
            continue

        source_text = "\n".join(buffer)
        buffer.clear()
        try:
            program = read_program(source_text, "<string>", descriptors)
            # Reuse one interpreter so variables survive between buffers.
            if interpreter is None:
                interpreter = dialect.interpreter_factory(program)
                _configure_interpreter(interpreter, verbose=verbose, wait_ticks=True)
            else:
                interpreter.set_program(program)
            interpreter.runaway_limit = runaway_limit
            while True:
                interpreter.go()
                if not interpreter.is_active():
                    break
        except ScriptParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
        except ScriptFault as error:
            target = error.interpreter or interpreter
            if target is None:
                print(f"{error.__class__.__name__}: {error.message}", file=sys.stderr)
            else:
                print(TracebackFormatter(target).format_text(error, verbose=verbose), file=sys.stderr)
    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="StepScript script runner")
    parser.add_argument("programs", nargs="*", help="Script file paths, or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat the program argument as literal source text")
    parser.add_argument("--start", default=None, help="Label to start the first script at")
    parser.add_argument("--type", dest="type_name", default=CONTROL_TYPE, help="Dialect for scripts without '!type' metadata")
    parser.add_argument("--runaway-limit", type=int, default=0, help="Fault a script after this many commands in one tick (0 = unlimited)")
    parser.add_argument("--ticks", type=int, default=0, help="Stop after this many engine ticks (0 = run until idle)")
    parser.add_argument("--tick-interval", type=float, default=0.0, help="Seconds to sleep between ticks")
    parser.add_argument("--wait-ticks", action="store_true", help="Count 'wait' in ticks instead of milliseconds")
    parser.add_argument("--ext", action="append", default=[], help="Extension module or .ssx pointer file (repeatable)")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Record variable snapshots in tracebacks")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    parser.add_argument("--log-level", default="warning", help="Logging level (debug, info, warning, error)")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    try:
        services = load_runtime_services(args.ext)
        if not services.dialect_registry.has(args.type_name):
            print(f"Unknown dialect '{args.type_name}'", file=sys.stderr)
            return 1
    except ScriptExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1

    if not args.programs:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(services, args.type_name, verbose=args.verbose, runaway_limit=args.runaway_limit)

    try:
        names = _script_names(args.programs, args.source_mode)
    except ScriptError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1

    sources: List[tuple] = []
    if args.source_mode:
        sources = [("<string>", text) for text in args.programs]
    else:
        for filename in args.programs:
            try:
                with open(filename, "r", encoding="utf-8") as handle:
                    sources.append((filename, handle.read()))
            except (OSError, UnicodeDecodeError) as exc:
                print(f"Failed to read {filename}: {exc}", file=sys.stderr)
                return 1

    engine = CliEngine(
        runaway_limit=args.runaway_limit,
        verbose=args.verbose,
        wait_ticks=args.wait_ticks,
        traceback_json=args.traceback_json,
    )
    services.bind(engine)

    for name, (filename, text) in zip(names, sources):
        try:
            program = load_program(text, filename, services, args.type_name)
        except ScriptParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
            return 1
        except ScriptExtensionError as error:
            print(f"ExtensionError: {error}", file=sys.stderr)
            return 1
        engine.add_script(name, program)

    try:
        started = engine.call_script(names[0], args.start)
    except ScriptRuntimeError as error:
        print(f"{error.__class__.__name__}: {error.message}", file=sys.stderr)
        return 1
    if not started:
        print(f"Script '{names[0]}' could not be started", file=sys.stderr)
        return 1

    tick = 0
    while len(engine) > 0 and (args.ticks <= 0 or tick < args.ticks):
        engine.go()
        tick += 1
        if args.tick_interval > 0 and len(engine) > 0:
            time.sleep(args.tick_interval)

    return 1 if engine.failures else 0


if __name__ == "__main__":
    raise SystemExit(run_cli())
