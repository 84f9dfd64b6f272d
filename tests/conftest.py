from __future__ import annotations
import os
from typing import List

import pytest

from control import ControlDescriptor, ControlInterpreter
from interpreter import InterpreterListener
from parser import read_program


ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
STACK_EXTENSION = os.path.join(ROOT, "ext", "stack.py")


class RecordingListener(InterpreterListener):
    def __init__(self) -> None:
        self.events: List[str] = []

    def started(self, interpreter) -> None:
        self.events.append("started")

    def ended(self, interpreter) -> None:
        self.events.append("ended")

    def stepped_forward(self, interpreter) -> None:
        self.events.append("stepped_forward")

    def broke(self, interpreter) -> None:
        self.events.append("broke")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


class Output:
    def __init__(self) -> None:
        self.chunks: List[str] = []

    def __call__(self, text: str) -> None:
        self.chunks.append(text)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def output() -> Output:
    return Output()


@pytest.fixture
def control_descriptor() -> ControlDescriptor:
    return ControlDescriptor()


@pytest.fixture
def make_interpreter(output, clock, control_descriptor):
    def factory(source: str, **kwargs) -> ControlInterpreter:
        program = read_program(source, "test.ss", [control_descriptor])
        kwargs.setdefault("output_sink", output)
        kwargs.setdefault("clock", clock)
        return ControlInterpreter(program, **kwargs)

    return factory


@pytest.fixture
def stack_extension_path() -> str:
    return STACK_EXTENSION
