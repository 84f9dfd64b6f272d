from __future__ import annotations
import math

import pytest

from descriptors import CommandDescriptor
from lexer import ScriptError
from program import IDENTIFIER, INTEGER, NUMBER, STRING, Argument, Command, Program


def command(name, *arguments, line_number=1):
    return Command(name=name, arguments=tuple(arguments), line=name, line_number=line_number)


def test_argument_coercions():
    assert Argument("12", INTEGER).as_int() == 12
    assert Argument("2.9", NUMBER).as_int() == 2
    assert Argument("2.5", NUMBER).as_float() == 2.5
    assert Argument("x", IDENTIFIER).as_int() == 0
    assert math.isnan(Argument("hi", STRING).as_float())


def test_argument_str_quotes_strings():
    assert str(Argument("hi", STRING)) == '"hi"'
    assert str(Argument("x", IDENTIFIER)) == "x"


def test_command_matches_ignores_case():
    assert command("PrintLn").matches("println")
    assert not command("print").matches("println")


def test_program_commands():
    program = Program(name="p")
    program.add_command(command("a"))
    program.add_command(command("c"))
    program.insert_command(1, command("b"))
    assert [c.name for c in program] == ["a", "b", "c"]
    assert program.remove_command(0).name == "a"
    assert len(program) == 2
    assert program.get_command(-1) is None
    assert program.get_command(2) is None
    assert isinstance(program.commands, tuple)


def test_labels_are_case_insensitive():
    program = Program()
    program.set_label("Loop", 3)
    assert program.get_index_by_label("LOOP") == 3
    assert program.labels() == {"loop": 3}
    program.clear_label("loop")
    assert program.get_index_by_label("loop") is None


def test_metadata_set_and_remove():
    program = Program()
    program.set_metadata("Type", "control")
    assert program.get_metadata("TYPE") == "control"
    program.set_metadata("type", None)
    assert program.metadata() == {}


def test_descriptor_entries():
    descriptor = CommandDescriptor()
    descriptor.set_command_entry("Jump", 2, True, None, IDENTIFIER)
    entry = descriptor.get_command_entry("jump")
    assert entry is not None
    assert entry.type_at(0) is None
    assert entry.type_at(1) == IDENTIFIER
    assert entry.type_at(5) is None
    assert entry.accepts_count(2) and not entry.accepts_count(3)
    assert "JUMP" in descriptor
    assert len(descriptor) == 1
    descriptor.remove_command_entry("jump")
    assert descriptor.get_command_entry("jump") is None


def test_descriptor_rejects_unknown_kind():
    with pytest.raises(ScriptError):
        CommandDescriptor().set_command_entry("x", 1, True, "BOOLEAN")


def test_control_descriptor_covers_commands(control_descriptor):
    for name in ("goto", "gosub", "return", "end", "print", "println", "set", "inc", "dec",
                 "goless", "gogtr", "goeq", "goneq", "golesseq", "gogtreq", "break", "wait"):
        assert control_descriptor.has(name)
    assert control_descriptor.get_command_entry("println").describe_count() == "at least 1"
