from __future__ import annotations
import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Union

from lexer import ScriptError
from program import Command, Program


# Current index of a context that has not executed anything yet.
SCRIPT_START = -1

DEFAULT_HISTORY = 256


class ScriptFault(ScriptError):
    """Base class for faults raised while an interpreter steps."""

    def __init__(
        self,
        message: str,
        *,
        interpreter: Optional["Interpreter"] = None,
        command: Optional[Command] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.interpreter = interpreter
        self.command = command
        self.step_index: Optional[int] = None


class ScriptRuntimeError(ScriptFault):
    """Raised for runtime faults: bad labels, unsupported commands, RETURN without GOSUB."""


class ScriptRunawayError(ScriptFault):
    """Raised when an interpreter executes more commands than its runaway limit allows."""


@dataclass
class ExecutionContext:
    program: Program
    current_index: int
    next_index: int
    frame_id: str = ""
    entry_index: int = 0
    # Set once the frame has taken its first step.
    started: bool = False

    @property
    def current_command(self) -> Optional[Command]:
        return self.program.get_command(self.current_index)


class InterpreterListener:
    """Receives interpreter lifecycle notifications. Override what you need."""

    def started(self, interpreter: "Interpreter") -> None:
        pass

    def ended(self, interpreter: "Interpreter") -> None:
        pass

    def stepped_forward(self, interpreter: "Interpreter") -> None:
        pass

    def broke(self, interpreter: "Interpreter") -> None:
        pass


LISTENER_EVENTS = ("started", "ended", "stepped_forward", "broke")


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: str
    depth: int
    command_index: int
    command: Optional[Command]
    env_snapshot: Optional[Dict[str, str]]

    @property
    def line_number(self) -> Optional[int]:
        return self.command.line_number if self.command else None

    @property
    def statement(self) -> Optional[str]:
        return self.command.line.strip() if self.command else None


class StateLogger:
    """Bounded history of executed steps, used to build tracebacks."""

    def __init__(self, verbose: bool, history: int = DEFAULT_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history if history > 0 else None)
        self.next_state_index = 0
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        context: ExecutionContext,
        depth: int,
        command: Optional[Command],
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        step_index = self.next_state_index
        entry = StateEntry(
            step_index=step_index,
            state_id=f"s_{step_index:06d}",
            frame_id=context.frame_id,
            depth=depth,
            command_index=context.current_index,
            command=command,
            env_snapshot=env_snapshot,
        )
        self.entries.append(entry)
        self.frame_last_entry[context.frame_id] = entry
        self.next_state_index += 1
        return entry

    def forget_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    @property
    def last_entry(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None

    def clear(self) -> None:
        self.entries.clear()
        self.frame_last_entry.clear()


class Interpreter:
    """Steps through a Program one command at a time.

    Subclasses give commands their meaning by overriding execute_command().
    Control flow (call/return, jumps, suspension) is driven through the
    context-stack methods here; the bottom context is never popped.

    An interpreter is not thread-safe. One driver steps it at a time.
    """

    def __init__(
        self,
        program: Optional[Program] = None,
        start: Union[int, str] = 0,
        *,
        runaway_limit: int = 0,
        verbose: bool = False,
        history: int = DEFAULT_HISTORY,
    ) -> None:
        self.runaway_limit = runaway_limit
        self.verbose = verbose
        self.listeners: List[InterpreterListener] = []
        self.logger = StateLogger(verbose=verbose, history=history)
        self.context_stack: List[ExecutionContext] = []
        self.command_count = 0
        self._break = False
        self.frame_counter = 0
        if program is not None:
            self.set_program(program, start)

    def _initialize(self) -> None:
        self._break = False
        self.command_count = 0
        self.context_stack = []
        self.logger.clear()

    def set_program(self, program: Program, start: Union[int, str] = 0) -> None:
        if isinstance(start, str):
            index = program.get_index_by_label(start)
            if index is None:
                raise ScriptRuntimeError(f"Invalid label requested by script: '{start}'", interpreter=self)
            start = index
        self._initialize()
        self.push_context(program, SCRIPT_START, start)

    # ---- listeners ----
    def add_listener(self, listener: InterpreterListener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener: InterpreterListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    # ---- context stack ----
    def push_context(self, program: Program, start_index: int, next_index: int) -> None:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        self.context_stack.append(
            ExecutionContext(
                program=program,
                current_index=start_index,
                next_index=next_index,
                frame_id=frame_id,
                entry_index=next_index,
                started=start_index != SCRIPT_START,
            )
        )

    def push_subroutine(self, next_index: int) -> None:
        context = self.context_stack[-1]
        self.push_context(context.program, 0, next_index)

    def pop_context(self) -> bool:
        if len(self.context_stack) <= 1:
            return False
        context = self.context_stack.pop()
        self.logger.forget_frame(context.frame_id)
        return True

    @property
    def current_context(self) -> Optional[ExecutionContext]:
        return self.context_stack[-1] if self.context_stack else None

    @property
    def depth(self) -> int:
        return len(self.context_stack)

    def set_next_command_index(self, index: int) -> None:
        self.context_stack[-1].next_index = index

    def set_next_command_index_by_label(self, label: str) -> None:
        index = self.get_command_index_by_label(label)
        if index is None:
            raise self.runtime_error(f"Invalid label requested by script: '{label}'")
        self.context_stack[-1].next_index = index

    def get_command_index_by_label(self, label: str) -> Optional[int]:
        return self.context_stack[-1].program.get_index_by_label(label)

    # ---- runaway / suspension ----
    def reset_command_count(self) -> None:
        self.command_count = 0

    def set_break(self) -> None:
        self._break = True

    def should_break(self) -> bool:
        return self._break

    def reset_break(self) -> None:
        self._break = False

    # ---- stepping ----
    def step_forward(self) -> bool:
        """Advance one step. Returns False when there is nothing more to do this tick."""
        if not self.context_stack:
            self._fire("ended")
            return False

        if self.should_break():
            self.reset_break()
            self._fire("broke")
            return False

        if self.runaway_limit > 0 and self.command_count >= self.runaway_limit:
            error = ScriptRunawayError(
                f"Caught runaway script after {self.runaway_limit} steps.",
                interpreter=self,
                command=self.context_stack[-1].current_command,
            )
            error.step_index = self._last_step_index()
            raise error

        context = self.context_stack[-1]
        if not context.started:
            context.started = True
            self._fire("started")
        elif context.current_command is None:
            # Finished frames stay finished.
            self._fire("ended")
            return False

        context.current_index = context.next_index
        context.next_index += 1
        self._fire("stepped_forward")

        command = context.program.get_command(context.current_index)
        if command is None:
            self._fire("ended")
            return False

        self._log_step(context, command)
        if not self.execute_command(command):
            raise self.runtime_error(f"Unknown or unsupported command '{command.name}'.")
        self.command_count += 1
        return True

    def is_active(self) -> bool:
        context = self.current_context
        return context is not None and context.current_command is not None

    def go(self) -> None:
        self.reset_command_count()
        while self.step_forward():
            pass

    def execute_command(self, command: Command) -> bool:
        """Perform the command. Return False when the command name is not recognized."""
        raise NotImplementedError

    # ---- diagnostics ----
    def runtime_error(self, message: str) -> ScriptRuntimeError:
        context = self.current_context
        error = ScriptRuntimeError(
            message,
            interpreter=self,
            command=context.current_command if context else None,
        )
        error.step_index = self._last_step_index()
        return error

    def snapshot(self) -> Dict[str, str]:
        return {}

    def _last_step_index(self) -> Optional[int]:
        entry = self.logger.last_entry
        return entry.step_index if entry else None

    def _log_step(self, context: ExecutionContext, command: Command) -> None:
        self.logger.record(
            context=context,
            depth=len(self.context_stack),
            command=command,
            env_snapshot=self.snapshot() if self.verbose else None,
        )

    def _fire(self, event: str) -> None:
        for listener in list(self.listeners):
            try:
                getattr(listener, event)(self)
            except ScriptError:
                raise
            except Exception as exc:
                raise self.runtime_error(f"Listener hook '{event}' failed: {exc}") from exc


@dataclass
class TracebackFrame:
    name: str
    program: str
    command_index: int
    state_entry: Optional[StateEntry]
    command: Optional[Command] = field(default=None)


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for depth, context in enumerate(self.interpreter.context_stack):
            entry = self.interpreter.logger.last_entry_for_frame(context.frame_id)
            frames.append(
                TracebackFrame(
                    name=self._frame_name(context, depth),
                    program=context.program.name,
                    command_index=context.current_index,
                    state_entry=entry,
                    command=context.current_command,
                )
            )
        return frames

    def _frame_name(self, context: ExecutionContext, depth: int) -> str:
        if depth == 0:
            return "<top-level>"
        for label, index in context.program.labels().items():
            if index == context.entry_index:
                return label
        return f"<index {context.entry_index}>"

    def format_text(self, error: ScriptFault, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.command:
                lines.append(f"  File \"{frame.program}\", line {frame.command.line_number}, in {frame.name}")
                lines.append(f"    {frame.command.line.strip()}")
            else:
                lines.append(f"  File \"{frame.program}\", command {frame.command_index}, in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        lines.append(f"{error.__class__.__name__}: {error.message}")
        return "\n".join(lines)

    def to_json(self, error: ScriptFault) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {
                "frame_index": index,
                "name": frame.name,
                "program": frame.program,
                "command_index": frame.command_index,
            }
            if frame.command:
                entry["source_location"] = {
                    "line": frame.command.line_number,
                    "statement": frame.command.line.strip(),
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
