"""Inspect a single module for test classes.

Runs inside the discovery worker only: loading a module executes its
top-level code, which must never happen in the gate process itself.
"""

import importlib.util
import inspect
import logging
import sys
import unittest
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Any

log = logging.getLogger(__name__)

OPT_OUT_KEY = "RunTestsBeforePush"
METADATA_ATTRIBUTE = "__metadata__"


class ModuleLoadError(Exception):
    """Raised when a candidate module cannot be loaded."""


@dataclass(frozen=True, kw_only=True)
class Inspection:
    """Outcome of inspecting one candidate module."""

    test_classes: Sequence[str] = ()
    opted_out: bool = False

    @property
    def is_container(self) -> bool:
        """True when the module holds tests and did not opt out."""
        return not self.opted_out and bool(self.test_classes)


def module_name_for(path: Path) -> str:
    """Import name for a candidate file (``foo.py`` and ``foo.pyc`` both map to foo)."""
    return path.name.split(".", 1)[0]


def load_module(path: Path) -> ModuleType:
    """Load the module at ``path``, registering it under its own name.

    Raises:
        ModuleLoadError: If the module can't be located or its code fails

    """
    name = module_name_for(path)
    if name in sys.modules:
        name = f"_pushgate_candidate_{name}"

    spec = importlib.util.spec_from_file_location(name, path)
    if spec is None or spec.loader is None:
        raise ModuleLoadError(f"Not a loadable module: {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except (Exception, SystemExit) as e:
        sys.modules.pop(name, None)
        raise ModuleLoadError(f"{type(e).__name__}: {e}") from e
    return module


def metadata_pairs(module: ModuleType) -> Iterable[tuple[Any, Any]]:
    """Key/value pairs declared in the module's metadata."""
    metadata = getattr(module, METADATA_ATTRIBUTE, None)
    if metadata is None:
        return []
    if isinstance(metadata, Mapping):
        return list(metadata.items())

    pairs: list[tuple[Any, Any]] = []
    try:
        for entry in metadata:
            if isinstance(entry, (tuple, list)) and len(entry) == 2:
                pairs.append((entry[0], entry[1]))
    except TypeError:
        log.debug("Ignoring non-iterable metadata in %s", module.__name__)
    return pairs


def is_opted_out(module: ModuleType) -> bool:
    """True if the module declares ``RunTestsBeforePush`` = ``false``."""
    return any(
        str(key) == OPT_OUT_KEY and str(value).strip().lower() == "false"
        for key, value in metadata_pairs(module)
    )


def declared_classes(module: ModuleType) -> Sequence[type]:
    """Classes defined by the module itself; empty if enumeration fails."""
    try:
        return [
            obj
            for obj in vars(module).values()
            if inspect.isclass(obj) and obj.__module__ == module.__name__
        ]
    except Exception as e:
        log.debug("Failed to enumerate classes of %s: %s", module.__name__, e)
        return []


def is_test_class(cls: type) -> bool:
    """True for unittest test cases and classes marked with ``__test__ = True``."""
    try:
        if issubclass(cls, unittest.TestCase) and cls is not unittest.TestCase:
            return True
        return vars(cls).get("__test__") is True
    except TypeError:
        return False


def inspect_module(path: Path) -> Inspection:
    """Load ``path`` and report its test classes.

    Raises:
        ModuleLoadError: If the module can't be loaded

    """
    module = load_module(path)

    if is_opted_out(module):
        return Inspection(opted_out=True)

    return Inspection(
        test_classes=[
            cls.__qualname__ for cls in declared_classes(module) if is_test_class(cls)
        ]
    )
