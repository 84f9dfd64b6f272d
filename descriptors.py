from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from lexer import ScriptError
from program import ARGUMENT_TYPES


@dataclass(frozen=True)
class CommandEntry:
    argument_length: int
    strict: bool
    argument_types: Tuple[Optional[str], ...] = ()

    def type_at(self, position: int) -> Optional[str]:
        if position < len(self.argument_types):
            return self.argument_types[position]
        return None

    def accepts_count(self, count: int) -> bool:
        if self.strict:
            return count == self.argument_length
        return count >= self.argument_length

    def describe_count(self) -> str:
        if self.strict:
            return f"{self.argument_length}"
        return f"at least {self.argument_length}"


@dataclass
class CommandDescriptor:
    """Parse-time arity and argument-type rules, keyed by command name.

    Lookups ignore case. A descriptor has no runtime role; interpreters
    still check what they need when a command executes.
    """

    _entries: Dict[str, CommandEntry] = field(default_factory=dict)

    def set_command_entry(self, command: str, arguments: int, strict: bool, *argument_types: Optional[str]) -> None:
        if not command or not isinstance(command, str):
            raise ScriptError("Command name must be a non-empty string")
        if arguments < 0:
            raise ScriptError(f"Argument count for '{command}' must be >= 0")
        for kind in argument_types:
            if kind is not None and kind not in ARGUMENT_TYPES:
                raise ScriptError(f"Unknown argument type '{kind}' for command '{command}'")
        self._entries[command.lower()] = CommandEntry(arguments, strict, tuple(argument_types))

    def remove_command_entry(self, command: str) -> None:
        self._entries.pop(command.lower(), None)

    def get_command_entry(self, command: str) -> Optional[CommandEntry]:
        return self._entries.get(command.lower())

    def has(self, command: str) -> bool:
        return command.lower() in self._entries

    def names(self) -> set[str]:
        return set(self._entries.keys())

    def __contains__(self, command: object) -> bool:
        return isinstance(command, str) and self.has(command)

    def __len__(self) -> int:
        return len(self._entries)
