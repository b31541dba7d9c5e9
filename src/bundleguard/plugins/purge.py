"""Unused style elimination.

Scans the entry HTML and application sources for words with the default
extractor (``[A-Za-z0-9_-]+``) and removes CSS rules whose selectors name a
class, id or tag that never appears in them.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..exceptions import PluginError, ResolutionError
from .base import BuildPlugin

logger = logging.getLogger(__name__)

WORD_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
COMMENT_PATTERN = re.compile(r"/\*.*?\*/", re.DOTALL)
AT_RULE_NAME_PATTERN = re.compile(r"^@(-?[\w-]+)")
PSEUDO_PATTERN = re.compile(r"::?[\w-]+(\((?:[^()]|\([^()]*\))*\))?")
ATTRIBUTE_PATTERN = re.compile(r"\[[^\]]*\]")
COMPOUND_PATTERN = re.compile(r"^(?P<tag>[a-zA-Z][\w-]*|\*)?(?P<rest>.*)$")
SIMPLE_PART_PATTERN = re.compile(r"([.#])(-?[\w-]+)")

# At-rules whose body holds nested style rules that are purged recursively
NESTED_AT_RULES = frozenset({"media", "supports", "document", "layer", "container", "scope"})


def extract_words(text: str) -> set[str]:
    """Extract candidate selector words from content."""
    return set(WORD_PATTERN.findall(text))


def _skip_string(css: str, start: int) -> int:
    """Return the index just past the string literal starting at ``start``."""
    quote = css[start]
    i = start + 1
    while i < len(css):
        if css[i] == "\\":
            i += 2
            continue
        if css[i] == quote:
            return i + 1
        i += 1
    return i


def _matching_brace(css: str, start: int) -> int:
    """Find the ``}`` closing the ``{`` at ``start``."""
    depth = 0
    i = start
    while i < len(css):
        ch = css[i]
        if ch in "\"'":
            i = _skip_string(css, i)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    msg = f"Unbalanced braces in stylesheet at offset {start}"
    raise ValueError(msg)


def split_statements(css: str) -> list[tuple[str, str | None]]:
    """Split a stylesheet into ``(prelude, body)`` pairs.

    ``body`` is None for statements terminated by ``;`` such as ``@import``.
    """
    items: list[tuple[str, str | None]] = []
    i = 0
    start = 0
    while i < len(css):
        ch = css[i]
        if ch in "\"'":
            i = _skip_string(css, i)
            continue
        if ch == ";":
            prelude = css[start:i].strip()
            if prelude:
                items.append((prelude, None))
            start = i + 1
        elif ch == "{":
            end = _matching_brace(css, i)
            items.append((css[start:i].strip(), css[i + 1:end]))
            i = end + 1
            start = i
            continue
        elif ch == "}":
            msg = f"Unexpected '}}' in stylesheet at offset {i}"
            raise ValueError(msg)
        i += 1

    trailing = css[start:].strip()
    if trailing:
        items.append((trailing, None))
    return items


def split_selectors(prelude: str) -> list[str]:
    """Split a selector list on top-level commas."""
    selectors: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in prelude:
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        if ch == "," and depth == 0:
            selectors.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    selectors.append("".join(current).strip())
    return [s for s in selectors if s]


def selector_identifiers(selector: str) -> set[str]:
    """Collect the tag, class and id names a selector requires."""
    cleaned = PSEUDO_PATTERN.sub(" ", ATTRIBUTE_PATTERN.sub(" ", selector))
    cleaned = cleaned.replace("\\", "")
    identifiers: set[str] = set()
    for compound in re.split(r"[\s>+~]+", cleaned):
        if not compound:
            continue
        match = COMPOUND_PATTERN.match(compound)
        tag = match.group("tag") if match else None
        if tag and tag != "*":
            identifiers.add(tag)
        rest = match.group("rest") if match else compound
        identifiers.update(name for _, name in SIMPLE_PART_PATTERN.findall(rest))
    return identifiers


def is_selector_used(selector: str, words: set[str], safelist: Iterable[str] = ()) -> bool:
    """Check whether every identifier in the selector appears in the content."""
    allowed = words | set(safelist)
    return all(identifier in allowed for identifier in selector_identifiers(selector))


def purge_css(css: str, words: set[str], safelist: Iterable[str] = ()) -> str:
    """Remove style rules not referenced by the given words.

    Args:
        css: Stylesheet text
        words: Words extracted from content files
        safelist: Names that are always kept

    Returns:
        Stylesheet with unused rules removed

    Raises:
        ValueError: If the stylesheet has unbalanced braces
    """
    safelist = frozenset(safelist)
    kept: list[str] = []
    for prelude, body in split_statements(COMMENT_PATTERN.sub("", css)):
        if body is None:
            kept.append(f"{prelude};")
            continue

        if prelude.startswith("@"):
            match = AT_RULE_NAME_PATTERN.match(prelude)
            at_name = match.group(1).lower() if match else ""
            if at_name in NESTED_AT_RULES:
                inner = purge_css(body, words, safelist)
                if inner.strip():
                    kept.append(f"{prelude}{{{inner}}}")
            else:
                kept.append(f"{prelude}{{{body}}}")
            continue

        selectors = [
            s for s in split_selectors(prelude) if is_selector_used(s, words, safelist)
        ]
        if selectors:
            kept.append(f"{','.join(selectors)}{{{body}}}")

    return "\n".join(kept)


def resolve_content_files(src_dir: Path, patterns: Iterable[str]) -> list[Path]:
    """Resolve glob patterns against the source tree, excluding directories.

    Args:
        src_dir: Source tree to scan
        patterns: Glob patterns relative to ``src_dir``

    Returns:
        Matching files in pattern order, without duplicates

    Raises:
        ResolutionError: If the source tree is missing or unreadable
    """
    src_dir = Path(src_dir)
    if not src_dir.is_dir():
        msg = f"Source directory not found: {src_dir}"
        raise ResolutionError(msg, details={"stage": "purge", "path": str(src_dir)})
    if not os.access(src_dir, os.R_OK | os.X_OK):
        msg = f"Source directory is not readable: {src_dir}"
        raise ResolutionError(msg, details={"stage": "purge", "path": str(src_dir)})

    files: list[Path] = []
    seen: set[Path] = set()
    try:
        for pattern in patterns:
            for path in sorted(src_dir.glob(pattern)):
                if path.is_file() and path not in seen:
                    seen.add(path)
                    files.append(path)
    except (OSError, ValueError) as e:
        msg = f"Failed to resolve content globs in {src_dir}: {e}"
        raise ResolutionError(msg, details={"stage": "purge", "path": str(src_dir)}) from e

    if not files:
        logger.warning("No content files matched in %s; style purge will be a no-op", src_dir)
    return files


@dataclass(frozen=True)
class PurgeCssPlugin(BuildPlugin):
    """Removes CSS rules that no scanned source file references."""

    name = "purgecss"

    app_html: Path
    content_files: tuple[Path, ...] = ()
    safelist: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_noop(self) -> bool:
        """True when no source files were resolved, so nothing is purged."""
        return not self.content_files

    @property
    def paths(self) -> tuple[Path, ...]:
        """All files scanned for used selectors."""
        return (self.app_html, *self.content_files)

    def can_handle_asset(self, asset_path: str) -> bool:
        return not self.is_noop and asset_path.endswith(".css")

    def prepare(self, assets: Mapping[str, str]) -> set[str]:
        """Read every content path once and collect its words."""
        if self.is_noop:
            return set()

        words: set[str] = set()
        for path in self.paths:
            try:
                words |= extract_words(path.read_text(encoding="utf-8", errors="ignore"))
            except OSError as e:
                raise PluginError(
                    f"Failed to read content file {path}: {e}",
                    plugin_name=self.name,
                    asset_path=str(path),
                    details={"stage": self.name},
                ) from e
        logger.debug("Collected %d words from %d content files", len(words), len(self.paths))
        return words

    def transform(
        self,
        content: str,
        asset_path: str,
        assets: Mapping[str, str],
        context: Any,
    ) -> str:
        return purge_css(content, context, self.safelist)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "options": {
                "paths": [str(p) for p in self.paths],
                "safelist": sorted(self.safelist),
            },
        }


def create_purge_plugin(
    app_html: Path,
    content_files: Iterable[Path],
    safelist: Iterable[str] = (),
) -> PurgeCssPlugin:
    """Create the style purge plugin.

    An empty ``content_files`` still yields a valid plugin that purges nothing.
    """
    return PurgeCssPlugin(
        app_html=Path(app_html),
        content_files=tuple(Path(p) for p in content_files),
        safelist=frozenset(safelist),
    )
