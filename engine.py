from __future__ import annotations
import logging
import threading
from typing import Callable, Dict, List, Optional

from interpreter import Interpreter, ScriptRunawayError, ScriptRuntimeError
from program import Program


logger = logging.getLogger(__name__)

# Program metadata key that selects the interpreter kind for a script.
METADATA_KEY = "type"

InterpreterFactory = Callable[[Program], Interpreter]


class Engine:
    """Runs many script instances by interleaving them, one batch each per tick.

    Scripts are registered by name; their ``type`` metadata picks the
    interpreter factory that instantiates them. A faulting instance is
    retired without disturbing the others.
    """

    def __init__(self, *, runaway_limit: int = 0) -> None:
        self.runaway_limit = runaway_limit
        self.script_table: Dict[str, Program] = {}
        self.interpreter_table: Dict[str, InterpreterFactory] = {}
        self.active_interpreters: List[Interpreter] = []
        self._lock = threading.RLock()

    # ---- scripts ----
    def add_script(self, name: str, script: Program) -> None:
        self.script_table[name.lower()] = script

    def get_script(self, name: str) -> Optional[Program]:
        return self.script_table.get(name.lower())

    def remove_script(self, name: str) -> Optional[Program]:
        return self.script_table.pop(name.lower(), None)

    def set_interpreter_type(self, type_name: str, factory: Optional[InterpreterFactory]) -> None:
        if factory is None:
            self.interpreter_table.pop(type_name.lower(), None)
        else:
            self.interpreter_table[type_name.lower()] = factory

    def get_interpreter_type(self, type_name: str) -> Optional[InterpreterFactory]:
        return self.interpreter_table.get(type_name.lower())

    # ---- scheduling ----
    def call_script(self, name: str, start_label: Optional[str] = None) -> bool:
        """Start a new instance of a script. Returns False if it could not be started."""
        with self._lock:
            script = self.get_script(name)
            if script is None:
                logger.debug("call_script: no script named %r", name)
                return False

            type_name = script.get_metadata(METADATA_KEY)
            factory = self.get_interpreter_type(type_name) if type_name is not None else None
            if factory is None:
                logger.debug("call_script: script %r has no bound interpreter type (%r)", name, type_name)
                return False

            interpreter = factory(script)
            if self.runaway_limit > 0:
                interpreter.runaway_limit = self.runaway_limit
            if start_label is not None:
                interpreter.set_next_command_index_by_label(start_label)
            self.active_interpreters.append(interpreter)
            self.instantiated_script(interpreter)
            return True

    def go(self) -> None:
        """Run every active interpreter once, retiring finished or faulted ones."""
        with self._lock:
            if not self.active_interpreters:
                return
            # Scripts called from hooks during this tick land in the fresh
            # list and first run on the next tick.
            current, self.active_interpreters = self.active_interpreters, []
            still_active: List[Interpreter] = []
            for interpreter in current:
                try:
                    interpreter.go()
                except ScriptRunawayError as exception:
                    self.error_runaway_script(exception)
                    self.freed_script(interpreter)
                    continue
                except ScriptRuntimeError as exception:
                    self.error_runtime_script(exception)
                    self.freed_script(interpreter)
                    continue
                except Exception as exception:
                    self.error_script(interpreter, exception)
                    self.freed_script(interpreter)
                    continue
                if interpreter.is_active():
                    still_active.append(interpreter)
                else:
                    self.freed_script(interpreter)
            self.active_interpreters = still_active + self.active_interpreters

    @property
    def active(self) -> List[Interpreter]:
        return list(self.active_interpreters)

    def __len__(self) -> int:
        return len(self.active_interpreters)

    # ---- hooks ----
    def instantiated_script(self, interpreter: Interpreter) -> None:
        logger.debug("instantiated %r", interpreter)

    def freed_script(self, interpreter: Interpreter) -> None:
        logger.debug("freed %r", interpreter)

    def error_runaway_script(self, exception: ScriptRunawayError) -> None:
        logger.warning("runaway script: %s", exception.message)

    def error_runtime_script(self, exception: ScriptRuntimeError) -> None:
        logger.error("script runtime error: %s", exception.message)

    def error_script(self, interpreter: Interpreter, exception: Exception) -> None:
        logger.exception("script failed: %s", exception)
