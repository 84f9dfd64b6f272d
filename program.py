"""In-memory program representation produced by the reader."""

from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple


IDENTIFIER = "IDENTIFIER"
INTEGER = "INTEGER"
NUMBER = "NUMBER"
STRING = "STRING"

ARGUMENT_TYPES = (IDENTIFIER, INTEGER, NUMBER, STRING)


@dataclass(frozen=True)
class Argument:
    value: str
    type: str

    @property
    def is_identifier(self) -> bool:
        return self.type == IDENTIFIER

    @property
    def is_string(self) -> bool:
        return self.type == STRING

    @property
    def is_number(self) -> bool:
        return self.type in (INTEGER, NUMBER)

    @property
    def is_integer(self) -> bool:
        return self.type == INTEGER

    @property
    def is_float(self) -> bool:
        return self.type == NUMBER

    def as_int(self) -> int:
        if not self.is_number:
            return 0
        try:
            return int(self.value)
        except ValueError:
            number = self.as_float()
            if math.isnan(number) or math.isinf(number):
                return 0
            return int(number)

    def as_float(self) -> float:
        if not self.is_number:
            return math.nan
        try:
            return float(self.value)
        except ValueError:
            return math.nan

    def __str__(self) -> str:
        if self.type == STRING:
            return f'"{self.value}"'
        return self.value


@dataclass(frozen=True)
class Command:
    name: str
    arguments: Tuple[Argument, ...]
    line: str
    line_number: int

    def matches(self, name: str) -> bool:
        return self.name.lower() == name.lower()

    def __str__(self) -> str:
        kinds = " ".join(arg.type for arg in self.arguments)
        return f"{self.line.rstrip()}\t// {self.name} {kinds}".rstrip()


@dataclass
class Program:
    """Commands in execution order plus the label and metadata tables.

    Labels and metadata keys are case-insensitive. Label indices are not
    checked against the command list: a label may point at the position the
    next command will occupy, or past the end of the script.

    Once handed to an interpreter, a program is shared read-only.
    """

    name: str = "<string>"
    _commands: List[Command] = field(default_factory=list, repr=False)
    _labels: Dict[str, int] = field(default_factory=dict, repr=False)
    _metadata: Dict[str, str] = field(default_factory=dict, repr=False)

    # ---- commands ----
    def add_command(self, command: Command) -> None:
        self._commands.append(command)

    def insert_command(self, index: int, command: Command) -> None:
        self._commands.insert(index, command)

    def remove_command(self, index: int) -> Command:
        return self._commands.pop(index)

    def get_command(self, index: int) -> Optional[Command]:
        if index < 0 or index >= len(self._commands):
            return None
        return self._commands[index]

    @property
    def commands(self) -> Tuple[Command, ...]:
        return tuple(self._commands)

    def __len__(self) -> int:
        return len(self._commands)

    def __iter__(self) -> Iterator[Command]:
        return iter(self._commands)

    # ---- labels ----
    def set_label(self, label: str, index: int) -> None:
        self._labels[label.lower()] = index

    def clear_label(self, label: str) -> None:
        self._labels.pop(label.lower(), None)

    def get_index_by_label(self, label: str) -> Optional[int]:
        return self._labels.get(label.lower())

    def labels(self) -> Dict[str, int]:
        return dict(self._labels)

    # ---- metadata ----
    def set_metadata(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self._metadata.pop(key.lower(), None)
        else:
            self._metadata[key.lower()] = value

    def get_metadata(self, key: str) -> Optional[str]:
        return self._metadata.get(key.lower())

    def metadata(self) -> Dict[str, str]:
        return dict(self._metadata)
