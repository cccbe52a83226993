"""Directory-based module loading runtime.

Discovery: scan a directory for Python files defining a top-level
``MODULE = Module(name, exec)``.  Each file is imported, validated,
registered by name and its ``exec`` entry point is run in isolation.
Per-module configuration is read from ``moduleconfigs/<name>.json``.
"""
from modloader.base import LoadableUnit, Module, ModuleRegistry, get_module_config
from modloader.loader import ExecOutcome, ModuleLoader, discover_modules, unload_all

__all__ = [
    "ExecOutcome",
    "LoadableUnit",
    "Module",
    "ModuleLoader",
    "ModuleRegistry",
    "discover_modules",
    "get_module_config",
    "unload_all",
]
