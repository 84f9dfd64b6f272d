"""StepScript extension: the "stack" dialect.

Everything the control dialect does, plus an operand stack:

    push VALUE      push a literal or a variable's value
    pop VAR         pop into a variable
    add / sub / mul combine the two topmost numbers
    dup / swap      stack shuffling
    show            print the stack, top last
"""

from __future__ import annotations

from typing import Any, List, Sequence

from control import TYPE_FLT, TYPE_INT, ControlDescriptor, ControlInterpreter, Value
from extensions import ExtensionAPI
from program import IDENTIFIER, Argument

STEPSCRIPT_EXTENSION_NAME = "stack"
STEPSCRIPT_EXTENSION_API_VERSION = 1


class StackDescriptor(ControlDescriptor):
    def __init__(self) -> None:
        super().__init__()
        self.set_command_entry("push", 1, True)
        self.set_command_entry("pop", 1, True, IDENTIFIER)
        for name in ("add", "sub", "mul", "dup", "swap", "show"):
            self.set_command_entry(name, 0, True)


class StackInterpreter(ControlInterpreter):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.stack: List[Value] = []
        super().__init__(*args, **kwargs)
        self.register_command("push", 1, self._push)
        self.register_command("pop", 1, self._pop)
        self.register_command("add", 0, lambda args: self._binary(lambda a, b: a + b))
        self.register_command("sub", 0, lambda args: self._binary(lambda a, b: a - b))
        self.register_command("mul", 0, lambda args: self._binary(lambda a, b: a * b))
        self.register_command("dup", 0, self._dup)
        self.register_command("swap", 0, self._swap)
        self.register_command("show", 0, self._show)

    def _take(self) -> Value:
        if not self.stack:
            raise self.runtime_error("Stack underflow.")
        return self.stack.pop()

    def _push(self, args: Sequence[Argument]) -> None:
        self.stack.append(self.get_argument_value(args[0]))

    def _pop(self, args: Sequence[Argument]) -> None:
        self.set_variable(args[0].value, self._take())

    def _binary(self, op) -> None:
        right = self._take()
        left = self._take()
        if not (left.is_numeric and right.is_numeric):
            raise self.runtime_error("Stack arithmetic needs two numbers.")
        if left.type == TYPE_INT and right.type == TYPE_INT:
            self.stack.append(Value(TYPE_INT, op(left.to_int(), right.to_int())))
        else:
            self.stack.append(Value(TYPE_FLT, op(left.to_float(), right.to_float())))

    def _dup(self, args: Sequence[Argument]) -> None:
        top = self._take()
        self.stack.extend((top, top))

    def _swap(self, args: Sequence[Argument]) -> None:
        top = self._take()
        below = self._take()
        self.stack.extend((top, below))

    def _show(self, args: Sequence[Argument]) -> None:
        self.output_sink(" ".join(str(v) for v in self.stack) + "\n")


def stepscript_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="stack", version="0.1.0")
    ext.register_dialect("stack", StackInterpreter, descriptor=StackDescriptor())
