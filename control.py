"""The "control" dialect: variables, jumps, subroutines, printing and waits.

Variables are case-insensitive and hold a Value. Reading a variable that was
never set yields FLT 0.0. Conditional jumps compare with Value.compare():
two numbers compare numerically, anything else compares as text.
"""

from __future__ import annotations
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

from descriptors import CommandDescriptor
from interpreter import Interpreter
from lexer import ScriptError
from parser import INT64_MAX, INT64_MIN, parse_long
from program import IDENTIFIER, Argument, Command, Program


TYPE_INT = "INT"
TYPE_FLT = "FLT"
TYPE_STR = "STR"

CONTROL_TYPE = "control"


@dataclass(frozen=True)
class Value:
    type: str
    value: Any

    @staticmethod
    def of(raw: Union[int, float, str]) -> "Value":
        if isinstance(raw, bool):
            return Value(TYPE_INT, int(raw))
        if isinstance(raw, int):
            return Value(TYPE_INT, raw)
        if isinstance(raw, float):
            return Value(TYPE_FLT, raw)
        return Value(TYPE_STR, str(raw))

    @property
    def is_numeric(self) -> bool:
        return self.type in (TYPE_INT, TYPE_FLT)

    def to_int(self) -> int:
        if self.type == TYPE_INT:
            return int(self.value)
        if self.type == TYPE_STR:
            parsed = parse_long(str(self.value))
            if parsed is not None:
                return parsed
        number = self.to_float()
        if math.isnan(number):
            return 0
        if math.isinf(number):
            return INT64_MAX if number > 0 else INT64_MIN
        return int(number)

    def to_float(self) -> float:
        if self.is_numeric:
            return float(self.value)
        try:
            return float(str(self.value))
        except ValueError:
            return math.nan

    def compare(self, other: "Value") -> int:
        if self.is_numeric and other.is_numeric:
            left, right = self.to_float(), other.to_float()
        else:
            left, right = str(self), str(other)  # type: ignore[assignment]
        if left == right:
            return 0
        return -1 if left < right else 1

    def add(self, amount: Union[int, float]) -> "Value":
        if self.type == TYPE_STR:
            return Value(TYPE_STR, str(self) + str(Value.of(amount)))
        if self.type == TYPE_INT and isinstance(amount, int):
            return Value(TYPE_INT, int(self.value) + amount)
        return Value(TYPE_FLT, self.to_float() + float(amount))

    def __str__(self) -> str:
        if self.type == TYPE_FLT:
            return repr(float(self.value))
        return str(self.value)


CommandImpl = Callable[[Tuple[Argument, ...]], None]


@dataclass
class ControlCommand:
    name: str
    min_args: int
    impl: CommandImpl


class ControlDescriptor(CommandDescriptor):
    def __init__(self) -> None:
        super().__init__()
        self.set_command_entry("goto", 1, True, IDENTIFIER)
        self.set_command_entry("gosub", 1, True, IDENTIFIER)
        self.set_command_entry("return", 0, True)
        self.set_command_entry("end", 0, True)
        self.set_command_entry("print", 1, False, None)
        self.set_command_entry("println", 1, False, None)
        self.set_command_entry("set", 2, True, IDENTIFIER, None)
        self.set_command_entry("inc", 1, True, IDENTIFIER)
        self.set_command_entry("dec", 1, True, IDENTIFIER)
        for jump in ("goless", "gogtr", "goeq", "goneq", "golesseq", "gogtreq"):
            self.set_command_entry(jump, 3, True, None, None, IDENTIFIER)
        self.set_command_entry("break", 0, True)
        self.set_command_entry("wait", 1, True)


class ControlInterpreter(Interpreter):
    def __init__(
        self,
        program: Optional[Program] = None,
        start: Union[int, str] = 0,
        *,
        output_sink: Optional[Callable[[str], None]] = None,
        clock: Optional[Callable[[], float]] = None,
        wait_is_break_count: bool = False,
        **kwargs: Any,
    ) -> None:
        self.variables: Dict[str, Value] = {}
        self.output_sink = output_sink or (lambda text: print(text, end=""))
        self.clock = clock or time.monotonic
        self.wait_is_break_count = wait_is_break_count
        # Remaining wait: ticks, or milliseconds when not counting breaks.
        self.wait_time: float = 0
        self.break_time: Optional[float] = None
        self.commands: Dict[str, ControlCommand] = {}
        self._register("goto", 1, self._goto)
        self._register("gosub", 1, self._gosub)
        self._register("return", 0, self._return)
        self._register("end", 0, self._end)
        self._register("print", 1, self._print)
        self._register("println", 1, self._println)
        self._register("set", 2, self._set)
        self._register("inc", 1, self._increment)
        self._register("dec", 1, self._decrement)
        self._register_jump("goless", lambda c: c < 0)
        self._register_jump("gogtr", lambda c: c > 0)
        self._register_jump("goeq", lambda c: c == 0)
        self._register_jump("goneq", lambda c: c != 0)
        self._register_jump("golesseq", lambda c: c <= 0)
        self._register_jump("gogtreq", lambda c: c >= 0)
        self._register("break", 0, self._break_command)
        self._register("wait", 1, self._wait)
        super().__init__(program, start, **kwargs)

    def _register(self, name: str, min_args: int, impl: CommandImpl) -> None:
        self.commands[name.lower()] = ControlCommand(name=name, min_args=min_args, impl=impl)

    def _register_jump(self, name: str, predicate: Callable[[int], bool]) -> None:
        def impl(args: Tuple[Argument, ...]) -> None:
            index = self._label_index(args[2])
            if predicate(self.get_argument_value(args[0]).compare(self.get_argument_value(args[1]))):
                self.set_next_command_index(index)

        self._register(name, 3, impl)

    def register_command(self, name: str, min_args: int, impl: CommandImpl) -> None:
        if name.lower() in self.commands:
            raise ScriptError(f"Cannot override existing command '{name}'")
        self._register(name, min_args, impl)

    def _initialize(self) -> None:
        super()._initialize()
        self.wait_time = 0
        self.break_time = None

    def execute_command(self, command: Command) -> bool:
        entry = self.commands.get(command.name.lower())
        if entry is None:
            return False
        supplied = len(command.arguments)
        if supplied < entry.min_args:
            raise self.runtime_error(
                f"Expected {entry.min_args} arguments for command '{command.name}', got {supplied}"
            )
        entry.impl(command.arguments)
        return True

    # ---- variables ----
    def set_variable(self, name: str, value: Union[Value, int, float, str]) -> None:
        if not isinstance(value, Value):
            value = Value.of(value)
        self.variables[name.lower()] = value

    def get_variable(self, name: str) -> Value:
        return self.variables.get(name.lower(), Value(TYPE_FLT, 0.0))

    def has_variable(self, name: str) -> bool:
        return name.lower() in self.variables

    def get_argument_value(self, argument: Argument) -> Value:
        if argument.is_identifier:
            return self.get_variable(argument.value)
        if argument.is_string:
            return Value(TYPE_STR, argument.value)
        if argument.is_integer:
            return Value(TYPE_INT, argument.as_int())
        return Value(TYPE_FLT, argument.as_float())

    def snapshot(self) -> Dict[str, str]:
        return {name: f"{value.type}:{value}" for name, value in self.variables.items()}

    # ---- suspension ----
    def should_break(self) -> bool:
        if super().should_break():
            return True
        if self.wait_time > 0:
            if self.break_time is None:
                self.break_time = self._now_ms()
            return True
        return False

    def reset_break(self) -> None:
        if super().should_break():
            super().reset_break()
            return
        if self.wait_is_break_count:
            self.wait_time -= 1
            return
        now = self._now_ms()
        started = self.break_time if self.break_time is not None else now
        self.wait_time -= now - started
        self.break_time = now if self.wait_time > 0 else None

    def _now_ms(self) -> float:
        return self.clock() * 1000.0

    # ---- commands ----
    def _label_index(self, argument: Argument) -> int:
        if not argument.is_identifier:
            raise self.runtime_error(f"Argument is not an identifier: '{argument.value}'")
        index = self.get_command_index_by_label(argument.value)
        if index is None:
            raise self.runtime_error(f"Invalid label requested by script: '{argument.value}'")
        return index

    def _variable_name(self, argument: Argument, command: str) -> str:
        if not argument.is_identifier:
            raise self.runtime_error(f"Attempted {command} on a non-variable.")
        return argument.value

    def _goto(self, args: Sequence[Argument]) -> None:
        self.set_next_command_index(self._label_index(args[0]))

    def _gosub(self, args: Sequence[Argument]) -> None:
        self.push_subroutine(self._label_index(args[0]))

    def _return(self, args: Sequence[Argument]) -> None:
        if not self.pop_context():
            raise self.runtime_error("RETURN without GOSUB.")

    def _end(self, args: Sequence[Argument]) -> None:
        self.set_next_command_index(-1)

    def _print(self, args: Sequence[Argument]) -> None:
        self.output_sink(str(self.get_argument_value(args[0])))

    def _println(self, args: Sequence[Argument]) -> None:
        self.output_sink(str(self.get_argument_value(args[0])) + "\n")

    def _set(self, args: Sequence[Argument]) -> None:
        name = self._variable_name(args[0], "SET")
        self.set_variable(name, self.get_argument_value(args[1]))

    def _increment(self, args: Sequence[Argument]) -> None:
        self._step_variable(self._variable_name(args[0], "INC"), 1)

    def _decrement(self, args: Sequence[Argument]) -> None:
        self._step_variable(self._variable_name(args[0], "DEC"), -1)

    def _step_variable(self, name: str, amount: int) -> None:
        if not self.has_variable(name):
            self.set_variable(name, Value(TYPE_INT, amount))
            return
        current = self.get_variable(name)
        if current.type == TYPE_INT:
            self.set_variable(name, current.add(amount))
        else:
            self.set_variable(name, current.add(float(amount)))

    def _break_command(self, args: Sequence[Argument]) -> None:
        self.set_break()

    def _wait(self, args: Sequence[Argument]) -> None:
        self.wait_time = self.get_argument_value(args[0]).to_int()
        self.break_time = None
