"""Run configured plugins over an emitted build directory."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from .exceptions import PluginError
from .models import BuildConfiguration

logger = logging.getLogger(__name__)

TEXT_ASSET_SUFFIXES = frozenset({
    ".html",
    ".htm",
    ".css",
    ".js",
    ".mjs",
    ".cjs",
    ".json",
    ".map",
    ".svg",
    ".txt",
    ".webmanifest",
})


def load_assets(build_dir: Path) -> dict[str, str]:
    """Read the text assets of an emitted build.

    Args:
        build_dir: Build output directory

    Returns:
        POSIX-style relative path mapped to the file text, in sorted order

    Raises:
        PluginError: If the directory is missing or a file cannot be decoded
    """
    build_dir = Path(build_dir)
    if not build_dir.is_dir():
        msg = f"Build directory not found: {build_dir}"
        raise PluginError(msg, details={"stage": "load"})

    assets: dict[str, str] = {}
    for path in sorted(build_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in TEXT_ASSET_SUFFIXES:
            continue
        key = path.relative_to(build_dir).as_posix()
        try:
            # bytes round-trip keeps line endings intact for integrity digests
            assets[key] = path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            msg = f"Failed to read asset {key}: {e}"
            raise PluginError(msg, asset_path=key, details={"stage": "load"}) from e
    return assets


def run_plugins(config: BuildConfiguration, assets: Mapping[str, str]) -> dict[str, str]:
    """Run every executable plugin in configuration order.

    Host-provided entries that are only descriptions (strings, mappings) are
    skipped.
    """
    current = dict(assets)
    for plugin in config.plugins:
        run = getattr(plugin, "run", None)
        if not callable(run):
            logger.debug("Skipping non-executable plugin entry %r", plugin)
            continue
        logger.info("Running %s over %d assets", getattr(plugin, "name", plugin), len(current))
        current = run(current)
    return current


def write_assets(
    build_dir: Path,
    original: Mapping[str, str],
    processed: Mapping[str, str],
) -> list[str]:
    """Write back the assets that changed.

    Returns:
        Relative paths of rewritten assets
    """
    changed: list[str] = []
    for key, content in processed.items():
        if original.get(key) == content:
            continue
        target = Path(build_dir) / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content.encode("utf-8"))
        changed.append(key)
        logger.debug("Wrote %s", key)
    return changed


def process_build(config: BuildConfiguration, build_dir: Path) -> list[str]:
    """Load, process and write back an emitted build.

    Returns:
        Relative paths of rewritten assets
    """
    assets = load_assets(build_dir)
    processed = run_plugins(config, assets)
    return write_assets(build_dir, assets, processed)
