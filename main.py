import argparse
import asyncio
import logging
import sys

import config
from modloader.loader import ModuleLoader, discover_modules

log = logging.getLogger("modloader")


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
def setup_logging(level: str = config.LOG_LEVEL) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    try:
        config.LOG_DIR.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.LOG_DIR / "modloader.log"))
    except OSError as exc:
        print(f"File logging disabled: {exc}", file=sys.stderr)

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Load and start every module in a directory.",
    )
    parser.add_argument(
        "directory",
        nargs="?",
        default=None,
        help="Directory to scan, relative to the working directory (defaults to config.MODULES_DIR).",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Only list candidate module files, do not import them.",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (defaults to MODLOADER_LOG_LEVEL or INFO).",
    )
    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging(args.log_level)

    if args.list:
        try:
            entries = discover_modules(args.directory, strict=True)
        except OSError:
            label = args.directory if args.directory is not None else config.MODULES_DIR
            log.error("Could not list files in '%s'", label, exc_info=True)
            return 1
        for entry in entries:
            print(f"{entry['module']}: {entry['path']}")
        return 0

    loader = ModuleLoader(log)
    try:
        registry = asyncio.run(loader.run(args.directory))
    except KeyboardInterrupt:
        log.info("Interrupted.")
        return 130

    if loader.listing_error is not None:
        return 1

    for info in registry.list_modules():
        print(f"{info['name']}: {info['source']}")
    crashed = [o.name for o in loader.outcomes if not o.ok]
    print(f"Summary: loaded={len(registry)} crashed={len(crashed)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
