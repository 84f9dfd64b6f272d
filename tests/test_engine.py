from __future__ import annotations
import logging

import pytest

from control import CONTROL_TYPE, ControlInterpreter
from engine import METADATA_KEY, Engine
from interpreter import ScriptRuntimeError
from parser import read_program


class RecordingEngine(Engine):
    def __init__(self, output, **kwargs):
        super().__init__(**kwargs)
        self.output = output
        self.events = []
        self.set_interpreter_type(CONTROL_TYPE, self._make)

    def _make(self, program):
        return ControlInterpreter(program, output_sink=self.output)

    def instantiated_script(self, interpreter):
        self.events.append("instantiated")

    def freed_script(self, interpreter):
        self.events.append("freed")

    def error_runaway_script(self, exception):
        self.events.append(f"runaway: {exception.message}")

    def error_runtime_script(self, exception):
        self.events.append(f"runtime: {exception.message}")

    def error_script(self, interpreter, exception):
        self.events.append(f"error: {exception}")


def control_program(source, name="test.ss"):
    program = read_program(source, name)
    program.set_metadata(METADATA_KEY, CONTROL_TYPE)
    return program


@pytest.fixture
def engine(output):
    return RecordingEngine(output)


def test_call_and_run_script(engine, output):
    engine.add_script("Main", control_program("println 'hi'\n"))
    assert engine.call_script("main")
    assert len(engine) == 1
    engine.go()
    assert output.text == "hi\n"
    assert len(engine) == 0
    assert engine.events == ["instantiated", "freed"]


def test_call_unknown_script_returns_false(engine):
    assert engine.call_script("missing") is False


def test_call_script_without_bound_type_returns_false(engine):
    engine.add_script("plain", read_program("end\n"))
    assert engine.call_script("plain") is False
    program = read_program("!type:elsewhere\nend\n")
    engine.add_script("other", program)
    assert engine.call_script("other") is False
    assert engine.events == []


def test_call_script_at_label(engine, output):
    engine.add_script("main", control_program("println 'a'\n:second\nprintln 'b'\n"))
    assert engine.call_script("main", "SECOND")
    engine.go()
    assert output.text == "b\n"


def test_call_script_at_missing_label_raises(engine):
    engine.add_script("main", control_program("end\n"))
    with pytest.raises(ScriptRuntimeError):
        engine.call_script("main", "nowhere")
    assert len(engine) == 0


def test_scripts_interleave_by_tick(engine, output):
    engine.add_script("a", control_program("println 'a1'\nbreak\nprintln 'a2'\n"))
    engine.add_script("b", control_program("println 'b1'\nbreak\nprintln 'b2'\n"))
    engine.call_script("a")
    engine.call_script("b")
    engine.go()
    assert output.text == "a1\nb1\n"
    assert len(engine) == 2
    engine.go()
    assert output.text == "a1\nb1\na2\nb2\n"
    assert len(engine) == 0


def test_same_script_twice_runs_independently(engine):
    engine.add_script("count", control_program("inc n\nbreak\ninc n\n"))
    engine.call_script("count")
    engine.go()
    engine.call_script("count")
    first, second = engine.active
    assert first.get_variable("n").value == 1
    assert second.get_variable("n").value == 0.0
    engine.go()
    assert first.get_variable("n").value == 2
    assert second.get_variable("n").value == 1


def test_runtime_fault_retires_only_that_script(engine, output):
    engine.add_script("bad", control_program("return\n"))
    engine.add_script("good", control_program("println 1\nbreak\nprintln 2\n"))
    engine.call_script("bad")
    engine.call_script("good")
    engine.go()
    assert engine.events == ["instantiated", "instantiated", "runtime: RETURN without GOSUB.", "freed"]
    assert len(engine) == 1
    engine.go()
    assert output.text == "1\n2\n"


def test_engine_runaway_limit(output):
    engine = RecordingEngine(output, runaway_limit=5)
    engine.add_script("spin", control_program(":top\ngoto top\n"))
    engine.call_script("spin")
    assert engine.active[0].runaway_limit == 5
    engine.go()
    assert engine.events[1].startswith("runaway: ")
    assert engine.events[-1] == "freed"
    assert len(engine) == 0


def test_unexpected_exception_goes_to_error_hook(engine):
    def exploding(args):
        raise KeyError("kaboom")

    engine.add_script("main", control_program("explode\n"))
    engine.call_script("main")
    engine.active[0].register_command("explode", 0, exploding)
    engine.go()
    assert engine.events[1] == "error: 'kaboom'"
    assert len(engine) == 0


def test_script_called_during_tick_starts_next_tick(output):
    class ChainEngine(RecordingEngine):
        def freed_script(self, interpreter):
            super().freed_script(interpreter)
            if self.get_script("second") is not None and self.events.count("freed") == 1:
                self.call_script("second")

    engine = ChainEngine(output)
    engine.add_script("first", control_program("println 'one'\n"))
    engine.add_script("second", control_program("println 'two'\n"))
    engine.call_script("first")
    engine.go()
    assert output.text == "one\n"
    assert len(engine) == 1
    engine.go()
    assert output.text == "one\ntwo\n"


def test_tables_are_case_insensitive(engine):
    program = control_program("end\n")
    engine.add_script("Main", program)
    assert engine.get_script("MAIN") is program
    assert engine.remove_script("main") is program
    assert engine.get_script("main") is None
    engine.set_interpreter_type("Control", None)
    assert engine.get_interpreter_type("control") is None


def test_default_hooks_log(output, caplog):
    engine = Engine()
    engine.set_interpreter_type(CONTROL_TYPE, lambda program: ControlInterpreter(program, output_sink=output))
    engine.add_script("bad", control_program("goto nowhere\n"))
    engine.call_script("bad")
    with caplog.at_level(logging.ERROR, logger="engine"):
        engine.go()
    assert "Invalid label requested by script: 'nowhere'" in caplog.text
