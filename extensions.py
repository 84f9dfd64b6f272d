from __future__ import annotations

import hashlib
import importlib.util
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Type

from control import CONTROL_TYPE, ControlDescriptor, ControlInterpreter
from descriptors import CommandDescriptor
from engine import Engine
from interpreter import Interpreter
from lexer import ScriptError
from program import Program


EXTENSION_API_VERSION = 1


class ScriptExtensionError(ScriptError):
    pass


@dataclass(frozen=True)
class ExtensionMetadata:
    name: str
    version: str = "0.0.0"
    requires_api: int = EXTENSION_API_VERSION


# ---- Dialects ----

InterpreterFactory = Callable[[Program], Interpreter]


@dataclass(frozen=True)
class DialectSpec:
    name: str
    interpreter_factory: InterpreterFactory
    descriptor: Optional[CommandDescriptor] = None


@dataclass
class DialectRegistry:
    _dialects: Dict[str, DialectSpec] = field(default_factory=dict)
    _sealed: set[str] = field(default_factory=set)

    def seal(self, name: str) -> None:
        self._sealed.add(name.lower())

    def register(self, spec: DialectSpec, *, seal: bool = False) -> None:
        name = spec.name
        if not name or not isinstance(name, str):
            raise ScriptExtensionError("Dialect name must be a non-empty string")
        key = name.lower()
        if key in self._sealed:
            raise ScriptExtensionError(f"Dialect '{name}' is sealed and cannot be redefined")
        if key in self._dialects:
            raise ScriptExtensionError(f"Dialect '{name}' is already defined")
        self._dialects[key] = spec
        if seal:
            self._sealed.add(key)

    def has(self, name: str) -> bool:
        return name.lower() in self._dialects

    def get(self, name: str) -> DialectSpec:
        try:
            return self._dialects[name.lower()]
        except KeyError:
            raise ScriptExtensionError(f"Unknown dialect '{name}'")

    def get_optional(self, name: str) -> Optional[DialectSpec]:
        return self._dialects.get(name.lower())

    def names(self) -> set[str]:
        return set(self._dialects.keys())

    def descriptors(self) -> List[CommandDescriptor]:
        return [spec.descriptor for spec in self._dialects.values() if spec.descriptor is not None]


@dataclass
class RuntimeServices:
    metadata: List[ExtensionMetadata] = field(default_factory=list)
    dialect_registry: DialectRegistry = field(default_factory=DialectRegistry)

    def bind(self, engine: Engine) -> Engine:
        for name in sorted(self.dialect_registry.names()):
            spec = self.dialect_registry.get(name)
            engine.set_interpreter_type(spec.name, spec.interpreter_factory)
        return engine

    def build_engine(self, *, runaway_limit: int = 0, engine_class: Type[Engine] = Engine) -> Engine:
        return self.bind(engine_class(runaway_limit=runaway_limit))


class ExtensionAPI:
    def __init__(self, *, services: RuntimeServices, ext_name: str) -> None:
        self._services = services
        self._ext_name = ext_name

    @property
    def name(self) -> str:
        return self._ext_name

    # ---- metadata ----
    def metadata(self, *, name: str, version: str = "0.0.0", requires_api: int = EXTENSION_API_VERSION) -> None:
        self._services.metadata.append(ExtensionMetadata(name=name, version=version, requires_api=requires_api))

    # ---- dialects ----
    def register_dialect(
        self,
        name: str,
        interpreter_factory: InterpreterFactory,
        *,
        descriptor: Optional[CommandDescriptor] = None,
    ) -> None:
        if not callable(interpreter_factory):
            raise ScriptExtensionError(f"Dialect '{name}' needs a callable interpreter factory")
        self._services.dialect_registry.register(
            DialectSpec(name=name, interpreter_factory=interpreter_factory, descriptor=descriptor)
        )

    def dialect(self, name: str, *, descriptor: Optional[CommandDescriptor] = None):
        def deco(factory: InterpreterFactory) -> InterpreterFactory:
            self.register_dialect(name, factory, descriptor=descriptor)
            return factory

        return deco


def _module_name(path: str) -> str:
    stem = os.path.splitext(os.path.basename(path))[0]
    digest = hashlib.sha256(path.encode("utf-8")).hexdigest()[:12]
    return "stepscript_ext_" + "".join(ch if ch.isalnum() else "_" for ch in stem) + "_" + digest


def load_extension_module(path: str) -> Any:
    if not os.path.exists(path):
        raise ScriptExtensionError(f"Extension not found: {path}")
    mod_name = _module_name(os.path.abspath(path))
    spec = importlib.util.spec_from_file_location(mod_name, path)
    if spec is None or spec.loader is None:
        raise ScriptExtensionError(f"Failed to load extension module: {path}")
    module = importlib.util.module_from_spec(spec)

    # Let extensions import siblings by temporarily prepending their directory.
    ext_dir = os.path.dirname(os.path.abspath(path))
    sys.path.insert(0, ext_dir)
    try:
        spec.loader.exec_module(module)  # type: ignore[union-attr]
    except ScriptError:
        raise
    except Exception as exc:
        raise ScriptExtensionError(f"Extension {path} failed to import: {exc}") from exc
    finally:
        if sys.path and sys.path[0] == ext_dir:
            sys.path.pop(0)
    return module


def read_ssx(pointer_file: str) -> List[str]:
    """Read a pointer file listing one extension path per line."""
    if not os.path.exists(pointer_file):
        raise ScriptExtensionError(f".ssx file not found: {pointer_file}")
    base_dir = os.path.dirname(os.path.abspath(pointer_file))
    out: List[str] = []
    with open(pointer_file, "r", encoding="utf-8") as handle:
        for raw in handle.read().splitlines():
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            if not os.path.isabs(line):
                line = os.path.abspath(os.path.join(base_dir, line))
            out.append(line)
    return out


def gather_extension_paths(paths: Sequence[str]) -> List[str]:
    """Expand .ssx pointer files; a module named twice is loaded once."""
    out: List[str] = []
    for path in paths:
        listed = read_ssx(path) if path.lower().endswith(".ssx") else [path]
        for entry in listed:
            entry = os.path.abspath(entry)
            if entry not in out:
                out.append(entry)
    return out


def build_default_services() -> RuntimeServices:
    services = RuntimeServices()
    services.dialect_registry.register(
        DialectSpec(name=CONTROL_TYPE, interpreter_factory=ControlInterpreter, descriptor=ControlDescriptor()),
        seal=True,
    )
    return services


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = build_default_services()
    for path in gather_extension_paths(paths):
        module = load_extension_module(path)
        api_version = getattr(module, "STEPSCRIPT_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
        if api_version != EXTENSION_API_VERSION:
            raise ScriptExtensionError(
                f"Extension {path} requires API {api_version}, host supports {EXTENSION_API_VERSION}"
            )
        register = getattr(module, "stepscript_register", None)
        if register is None or not callable(register):
            raise ScriptExtensionError(f"Extension {path} must define callable stepscript_register(ext)")
        ext_name = getattr(module, "STEPSCRIPT_EXTENSION_NAME", os.path.splitext(os.path.basename(path))[0])
        ext = ExtensionAPI(services=services, ext_name=str(ext_name))
        before = services.dialect_registry.names()
        try:
            register(ext)
        except ScriptError:
            raise
        except Exception as exc:
            raise ScriptExtensionError(f"Extension '{ext_name}' failed to register: {exc}") from exc
        if services.dialect_registry.names() == before:
            raise ScriptExtensionError(f"Extension '{ext_name}' ({path}) registered no dialect")
    return services
