"""Module discovery and loading.

Scans a directory for unit files, imports each one, validates its
default export and runs its entry point.

Usage::

    from modloader.loader import ModuleLoader
    registry = await ModuleLoader().run("modules")

Discovery rules:
  1. Only files ending in ``config.MODULE_SUFFIX`` (non-recursive)
  2. Files starting with ``_`` are skipped
  3. The file must define a top-level ``MODULE`` (``config.MODULE_EXPORT``)
  4. ``MODULE.module_name`` must be a string, number or boolean
  5. The first file claiming a name wins; later ones are skipped
  6. ``MODULE.exec`` is called if callable, and awaited if it returns an
     awaitable

Every candidate runs as its own task.  A candidate that fails to import,
fails validation or raises from ``exec`` is logged and skipped without
affecting the others.  Only a directory that cannot be listed ends the run.
"""
from __future__ import annotations

import asyncio
import hashlib
import importlib.machinery
import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import config
from modloader.base import LoadableUnit, Module, ModuleRegistry, is_valid_name

log = logging.getLogger(__name__)

_MODULE_PREFIX = "modloader_unit_"


@dataclass
class ExecOutcome:
    """Result of invoking one module's entry point."""

    name: str
    file: str
    ok: bool
    result: Any = None
    error: BaseException | None = None


def _module_key(path: Path) -> str:
    # Unique per resolved file; dots would make the name look like a package
    digest = hashlib.sha1(str(path.resolve()).encode("utf-8")).hexdigest()[:12]
    return f"{_MODULE_PREFIX}{digest}_{path.stem.replace('.', '_')}"


def _is_candidate(path: Path, suffix: str) -> bool:
    return (
        path.name.endswith(suffix)
        and not path.name.startswith("_")
        and path.is_file()
    )


def _scan(searchdir: Path, suffix: str) -> tuple[int, list[Path]]:
    """Return (entry count, sorted candidate paths).  Raises OSError."""
    entries = sorted(searchdir.iterdir())
    return len(entries), [p for p in entries if _is_candidate(p, suffix)]


def _resolve(directory: Path | str | None) -> Path:
    target = directory if directory is not None else config.MODULES_DIR
    return Path.cwd() / Path(target).expanduser()


def discover_modules(
    directory: Path | str | None = None,
    suffix: str | None = None,
    *,
    strict: bool = False,
) -> list[dict[str, Any]]:
    """Discover candidate unit files without importing them.

    A directory that cannot be listed yields [] unless *strict* is set,
    in which case the OSError propagates.
    """
    target_dir = _resolve(directory)
    try:
        _, candidates = _scan(target_dir, suffix or config.MODULE_SUFFIX)
    except OSError:
        if strict:
            raise
        log.debug("Cannot list module directory %s", target_dir, exc_info=True)
        return []

    discovered: list[dict[str, Any]] = []
    for path in candidates:
        discovered.append({
            "module": path.stem,
            "path": str(path),
        })
    return discovered


class ModuleLoader:
    """Loads every unit file in a directory into a ``ModuleRegistry``.

    Parameters
    ----------
    log : logging.Logger | None
        Diagnostics sink.  Defaults to this module's logger.
    suffix : str | None
        Unit file suffix.  Defaults to ``config.MODULE_SUFFIX``.
    export : str | None
        Name of the default export.  Defaults to ``config.MODULE_EXPORT``.
    """

    def __init__(
        self,
        log: logging.Logger | None = None,
        *,
        suffix: str | None = None,
        export: str | None = None,
    ):
        self.log = log or logging.getLogger(__name__)
        self.suffix = suffix or config.MODULE_SUFFIX
        self.export = export or config.MODULE_EXPORT
        self.outcomes: list[ExecOutcome] = []
        self.listing_error: OSError | None = None

    async def run(self, directory: Path | str | None = None) -> ModuleRegistry:
        """Load, validate and start every module in *directory*.

        Resolves only after every candidate has been processed, including
        asynchronous entry points.
        """
        registry = ModuleRegistry()
        self.outcomes = []
        self.listing_error = None

        if not config.MODULES_ENABLED:
            self.log.debug("Module loading disabled (MODLOADER_ENABLED=False)")
            return registry

        label = str(directory if directory is not None else config.MODULES_DIR)
        searchdir = _resolve(directory)

        try:
            entry_count, candidates = await asyncio.to_thread(_scan, searchdir, self.suffix)
        except OSError as exc:
            self.listing_error = exc
            self.log.error("Cannot start up: could not list files in '%s'", label, exc_info=True)
            return registry

        if entry_count == 0:
            self.log.warning("No files were found in '%s'. Nothing to do.", label)
            return registry
        if not candidates:
            self.log.warning(
                "No '%s' module files were found in '%s'. Nothing to do.", self.suffix, label
            )
            return registry

        results = await asyncio.gather(
            *(self._process(path, registry) for path in candidates)
        )
        self.outcomes = [outcome for outcome in results if outcome is not None]

        failed = [o for o in self.outcomes if not o.ok]
        self.log.info(
            "Loaded %d module(s) from '%s': %s",
            len(registry),
            label,
            ", ".join(registry.names()) or "none",
        )
        if failed:
            self.log.warning(
                "%d module(s) crashed during exec: %s",
                len(failed),
                ", ".join(o.name for o in failed),
            )
        return registry

    async def _process(self, path: Path, registry: ModuleRegistry) -> ExecOutcome | None:
        # Everything up to the claim runs without awaiting, so claims follow
        # task creation order.
        loaded = self._load_candidate(path, registry)
        if loaded is None:
            return None
        name, entry = loaded
        return await self._invoke(name, path, entry)

    def _load_candidate(
        self, path: Path, registry: ModuleRegistry
    ) -> tuple[str, Callable[[], Any]] | None:
        """Import and validate one file, returning (name, entry point) to run.

        Returns None when the file was rejected or has nothing to invoke.
        """
        key = _module_key(path)

        try:
            module = self._import(path, key)
        except Exception:
            self.log.error("Module file '%s' failed to import, skipping.", path.name, exc_info=True)
            return None
        if module is None:
            return None

        unit = getattr(module, self.export, None)
        if unit is None:
            self.log.warning(
                "Module '%s' does not define a default export '%s', skipping.",
                path.name,
                self.export,
            )
            sys.modules.pop(key, None)
            return None

        if not isinstance(unit, LoadableUnit) or unit.module_name is None:
            self.log.warning(
                "Module '%s' does not define the default property 'module_name', skipping.",
                path.name,
            )
            sys.modules.pop(key, None)
            return None

        if not is_valid_name(unit.module_name):
            self.log.warning(
                "Module '%s' has an invalid 'module_name' of type %s, skipping.",
                path.name,
                type(unit.module_name).__name__,
            )
            sys.modules.pop(key, None)
            return None

        name = str(unit.module_name)
        if not registry.claim(name, unit, path):
            self.log.warning(
                "Module '%s' (%s) conflicts with another module, skipping.", name, path.name
            )
            sys.modules.pop(key, None)
            return None

        if not isinstance(unit, Module):
            self.log.warning(
                "Default export for module '%s' (%s) has a non-standard type: %s",
                name,
                path.name,
                type(unit).__name__,
            )

        entry = getattr(unit, "exec", None)
        if not callable(entry):
            self.log.warning(
                "Module '%s' (%s) does not define an 'exec' function.", name, path.name
            )
            return None

        self.log.debug("Module '%s' registered from %s", name, path.name)
        return name, entry

    def _import(self, path: Path, key: str) -> Any | None:
        # Explicit loader so suffixes other than .py import as source
        file_loader = importlib.machinery.SourceFileLoader(key, str(path))
        spec = importlib.util.spec_from_file_location(key, str(path), loader=file_loader)
        if spec is None or spec.loader is None:
            self.log.debug("Skipping %s: invalid module spec", path.name)
            return None

        module = importlib.util.module_from_spec(spec)
        sys.modules[key] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(key, None)
            raise
        return module

    async def _invoke(self, name: str, path: Path, entry: Callable[[], Any]) -> ExecOutcome:
        """Run an entry point, sync or async, and capture its outcome."""
        try:
            result = entry()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError as exc:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                # The run itself is being cancelled
                raise
            self.log.error("Module '%s' (%s) was cancelled.", name, path.name, exc_info=True)
            return ExecOutcome(name=name, file=path.name, ok=False, error=exc)
        except Exception as exc:
            self.log.error("Module '%s' (%s) crashed.", name, path.name, exc_info=True)
            return ExecOutcome(name=name, file=path.name, ok=False, error=exc)
        return ExecOutcome(name=name, file=path.name, ok=True, result=result)


def unload_all(registry: ModuleRegistry) -> int:
    """Unregister every module and drop its imported file from ``sys.modules``.

    Returns the number of modules unloaded.
    """
    names = registry.names()
    for name in names:
        source = registry.source(name)
        registry.unregister(name)
        if source is not None:
            sys.modules.pop(_module_key(source), None)
    return len(names)
