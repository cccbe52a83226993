"""Module descriptor and registry.

Provides:
  - ``Module``: the descriptor a unit file exports as ``MODULE``
  - ``LoadableUnit``: the protocol the loader validates exports against
  - ``ModuleRegistry``: name -> module mapping built by one discovery run
  - ``get_module_config``: per-module JSON configuration lookup

A unit file looks like::

    from modloader import Module

    def start():
        ...

    MODULE = Module("greeter", start)
"""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol, runtime_checkable

import config

log = logging.getLogger(__name__)

# bool is an int subclass, listed for readability
_NAME_TYPES = (str, int, float, bool)


def _noop() -> None:
    return None


def is_valid_name(value: Any) -> bool:
    """Return True if *value* can identify a module."""
    return isinstance(value, _NAME_TYPES)


def get_module_config(module_name: Any, config_dir: Path | str | None = None) -> dict[str, Any] | None:
    """Read ``<config_dir>/<module_name lower-cased>.json``.

    Returns None when the name is not a valid identifier, ``{}`` when the
    file is missing or cannot be parsed into a JSON object.
    """
    if not is_valid_name(module_name):
        return None

    base = Path(config_dir if config_dir is not None else config.MODULE_CONFIG_DIR)
    data_path = Path.cwd() / base / f"{str(module_name).lower()}.json"
    if not data_path.exists():
        return {}

    try:
        data = json.loads(data_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        log.warning("Could not import module data from '%s'", data_path, exc_info=True)
        return {}

    if not isinstance(data, dict):
        log.warning(
            "Module data in '%s' is a %s, expected a JSON object",
            data_path,
            type(data).__name__,
        )
        return {}
    return data


@runtime_checkable
class LoadableUnit(Protocol):
    """What a unit file's default export must provide.

    ``exec`` is optional at load time; the loader only invokes it when it
    is callable.
    """

    module_name: Any


class Module:
    """Descriptor for one loaded unit.

    Construction never raises.  An unusable name leaves the descriptor
    degraded: ``module_name`` is None and no configuration is looked up.
    """

    def __init__(
        self,
        module_name: Any,
        exec: Callable[[], Any] | None = None,
        *,
        config_dir: Path | str | None = None,
    ):
        self._module_name: str | None = None
        self._config_dir = config_dir
        self.exec: Callable[[], Any] = exec if callable(exec) else _noop
        self.config: dict[str, Any] = {}

        if not is_valid_name(module_name):
            log.error(
                "Cannot parse input for module_name: %s is not a string, number, nor boolean",
                type(module_name).__name__,
            )
            return
        self._module_name = str(module_name)
        self.config = get_module_config(self._module_name, self._config_dir) or {}

    @property
    def module_name(self) -> str | None:
        return self._module_name

    def reload_config(self) -> dict[str, Any]:
        """Re-read this module's configuration file and return it."""
        if not self._module_name:
            log.debug(
                "Cannot reload module configuration when the module name is not present or is invalid"
            )
            return self.config
        self.config = get_module_config(self._module_name, self._config_dir) or {}
        return self.config

    def on_unload(self) -> None:
        """Optional hook called when the module is removed from a registry."""
        pass

    def get_info(self) -> dict[str, Any]:
        return {
            "name": self._module_name,
            "has_exec": self.exec is not _noop,
            "config_keys": sorted(self.config),
        }

    def __repr__(self) -> str:
        return f"<Module {self._module_name!r}>"


class ModuleRegistry:
    """Thread-safe name -> module mapping.

    ``claim()`` is the check-and-set the loader uses; ``register()`` is for
    hosts adding modules by hand.
    """

    def __init__(self):
        self._modules: dict[str, Any] = {}
        self._sources: dict[str, Path | None] = {}
        self._lock = threading.Lock()

    def claim(self, name: str, module: Any, source: Path | None = None) -> bool:
        """Register *module* under *name* unless the name is taken.

        Returns False, leaving the existing entry untouched, on conflict.
        """
        with self._lock:
            if name in self._modules:
                return False
            self._modules[name] = module
            self._sources[name] = source
        return True

    def register(self, module: Module, source: Path | None = None) -> None:
        """Register a module instance, replacing any module of the same name."""
        if not module.module_name:
            raise ValueError("Module must have a name")
        with self._lock:
            if module.module_name in self._modules:
                log.warning("Module '%s' already registered, replacing", module.module_name)
            self._modules[module.module_name] = module
            self._sources[module.module_name] = source
        log.info("Module registered: %s", module)

    def unregister(self, name: str) -> Any | None:
        """Remove a module from the registry."""
        with self._lock:
            module = self._modules.pop(name, None)
            self._sources.pop(name, None)
        if module is not None:
            on_unload = getattr(module, "on_unload", None)
            if callable(on_unload):
                try:
                    on_unload()
                except Exception:
                    log.warning("Module '%s' on_unload failed", name, exc_info=True)
            log.info("Module unregistered: %s", name)
        return module

    def get(self, name: str) -> Any | None:
        with self._lock:
            return self._modules.get(name)

    def source(self, name: str) -> Path | None:
        """Return the file a module was loaded from, if known."""
        with self._lock:
            return self._sources.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._modules)

    def list_modules(self) -> list[dict[str, Any]]:
        """Return info for all registered modules, sorted by name."""
        with self._lock:
            items = sorted(self._modules.items())
            sources = dict(self._sources)
        infos = []
        for name, module in items:
            get_info = getattr(module, "get_info", None)
            info = get_info() if callable(get_info) else {"name": name}
            info["source"] = str(sources[name]) if sources.get(name) else None
            infos.append(info)
        return infos

    def reload_configs(self) -> int:
        """Reload the configuration of every module that supports it."""
        with self._lock:
            modules = list(self._modules.values())
        count = 0
        for module in modules:
            reload = getattr(module, "reload_config", None)
            if callable(reload):
                reload()
                count += 1
        return count

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._modules

    def __len__(self) -> int:
        with self._lock:
            return len(self._modules)

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __repr__(self) -> str:
        with self._lock:
            count = len(self._modules)
        return f"<ModuleRegistry [{count} modules]>"
