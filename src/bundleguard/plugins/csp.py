"""Content-Security-Policy and Subresource Integrity enforcement.

For every emitted HTML page the plugin:

* adds ``integrity`` and ``crossorigin`` attributes to ``<script src>`` and
  stylesheet ``<link>`` tags that point at same-origin emitted assets,
* allows inline ``<script>``/``<style>`` bodies by hash,
* injects the resulting policy as a ``<meta http-equiv>`` tag.

Digests are taken over the asset text as it is when the plugin runs, so any
plugin that rewrites stylesheets or scripts must run before this one.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import posixpath
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ..models import Directive, SecurityPolicy
from .base import BuildPlugin

logger = logging.getLogger(__name__)

TAG_PATTERN = re.compile(r"<(script|link)\b[^>]*>", re.IGNORECASE)
ATTRIBUTE_PATTERN = re.compile(
    r"""([^\s=/>]+)(?:\s*=\s*("[^"]*"|'[^']*'|[^\s"'=<>`]+))?""",
)
INLINE_SCRIPT_PATTERN = re.compile(
    r"<script\b(?P<attrs>[^>]*)>(?P<body>.*?)</script\s*>",
    re.IGNORECASE | re.DOTALL,
)
INLINE_STYLE_PATTERN = re.compile(
    r"<style\b[^>]*>(?P<body>.*?)</style\s*>",
    re.IGNORECASE | re.DOTALL,
)
HEAD_PATTERN = re.compile(r"<head\b[^>]*>", re.IGNORECASE)
EXISTING_META_PATTERN = re.compile(
    r"<meta\b[^>]*http-equiv\s*=\s*[\"']?content-security-policy[\"']?[^>]*>\s*",
    re.IGNORECASE,
)
EXTERNAL_URL_PATTERN = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.-]*:|//)")

# Directives browsers ignore when the policy is delivered in a meta tag
META_IGNORED_DIRECTIVES = frozenset({
    Directive.FRAME_ANCESTORS,
    Directive.REPORT_URI,
    Directive.REPORT_TO,
})

# Script types that browsers do not execute
NON_EXECUTABLE_SCRIPT_TYPES = frozenset({"application/json", "application/ld+json", "text/template"})


def compute_digest(content: str, algorithm: str = "sha384") -> str:
    """Return ``<algorithm>-<base64 digest>`` of the UTF-8 encoded content."""
    digest = hashlib.new(algorithm, content.encode("utf-8")).digest()
    return f"{algorithm}-{base64.b64encode(digest).decode('ascii')}"


def inline_digest(body: str, algorithm: str = "sha256") -> str:
    """Digest an inline element body the way browsers do, with LF line endings."""
    return compute_digest(body.replace("\r\n", "\n").replace("\r", "\n"), algorithm)


def parse_attributes(tag: str) -> dict[str, str | None]:
    """Parse the attributes of an opening tag, lower-casing names."""
    inner = re.sub(r"^<\w+|/?>$", "", tag)
    attributes: dict[str, str | None] = {}
    for name, value in ATTRIBUTE_PATTERN.findall(inner):
        if value and value[0] in "\"'":
            value = value[1:-1]
        attributes[name.lower()] = value or None
    return attributes


def resolve_asset_key(
    reference: str,
    page_path: str,
    assets: Mapping[str, str],
) -> str | None:
    """Map a same-origin URL reference to an emitted asset key.

    Returns None for cross-origin references and for files that were not
    emitted by this build.
    """
    if not reference or EXTERNAL_URL_PATTERN.match(reference):
        return None

    path = reference.split("#", 1)[0].split("?", 1)[0]
    if path.startswith("/"):
        candidates = [path.lstrip("/")]
    else:
        page_dir = posixpath.dirname(page_path)
        candidates = [posixpath.normpath(posixpath.join(page_dir, path)), path]

    for candidate in candidates:
        if candidate in assets:
            return candidate
    return None


def _add_attributes(tag: str, additions: dict[str, str]) -> str:
    """Append attributes just before the tag's closing ``>``."""
    rendered = "".join(f' {name}="{value}"' for name, value in additions.items())
    if tag.endswith("/>"):
        return f"{tag[:-2].rstrip()}{rendered} />"
    return f"{tag[:-1]}{rendered}>"


@dataclass(frozen=True)
class CspPlugin(BuildPlugin):
    """Injects a Content-Security-Policy and integrity hashes into HTML pages."""

    name = "csp"

    policy: SecurityPolicy
    hash_algorithm: str = "sha384"
    inline_hash_algorithm: str = "sha256"

    def can_handle_asset(self, asset_path: str) -> bool:
        return asset_path.endswith((".html", ".htm"))

    def transform(
        self,
        content: str,
        asset_path: str,
        assets: Mapping[str, str],
        context: Any,
    ) -> str:
        script_sources: list[str] = []

        def add_integrity(match: re.Match[str]) -> str:
            tag = match.group(0)
            attributes = parse_attributes(tag)
            if match.group(1).lower() == "script":
                reference = attributes.get("src")
            elif "stylesheet" in (attributes.get("rel") or "").lower().split():
                reference = attributes.get("href")
            else:
                return tag

            asset_key = resolve_asset_key(reference or "", asset_path, assets)
            if asset_key is None:
                return tag

            existing = (attributes.get("integrity") or "").split()
            integrity = existing[0] if existing else compute_digest(
                assets[asset_key], self.hash_algorithm,
            )
            if match.group(1).lower() == "script":
                script_sources.append(f"'{integrity}'")

            additions: dict[str, str] = {}
            if "integrity" not in attributes:
                additions["integrity"] = integrity
            if "crossorigin" not in attributes:
                additions["crossorigin"] = "anonymous"
            return _add_attributes(tag, additions) if additions else tag

        content = TAG_PATTERN.sub(add_integrity, content)

        for match in INLINE_SCRIPT_PATTERN.finditer(content):
            attributes = parse_attributes(f"<script{match.group('attrs')}>")
            if "src" in attributes or not match.group("body").strip():
                continue
            if (attributes.get("type") or "").lower() in NON_EXECUTABLE_SCRIPT_TYPES:
                continue
            script_sources.append(
                f"'{inline_digest(match.group('body'), self.inline_hash_algorithm)}'",
            )

        style_sources = [
            f"'{inline_digest(match.group('body'), self.inline_hash_algorithm)}'"
            for match in INLINE_STYLE_PATTERN.finditer(content)
            if match.group("body").strip()
        ]

        page_policy = self.page_policy(script_sources, style_sources)
        logger.debug(
            "%s: %d script and %d style hashes added to policy",
            asset_path,
            len(script_sources),
            len(style_sources),
        )
        return self.inject_meta(content, page_policy)

    def page_policy(
        self,
        script_sources: list[str],
        style_sources: list[str],
    ) -> SecurityPolicy:
        """Derive the policy for one page without touching the base policy."""
        policy = self.policy
        if script_sources:
            policy = policy.with_sources(Directive.SCRIPT_SRC, script_sources)
        if style_sources:
            policy = policy.with_sources(Directive.STYLE_SRC, style_sources)
        return policy

    def meta_content(self, policy: SecurityPolicy) -> str:
        """Render a policy for a meta tag, dropping directives meta ignores."""
        return "; ".join(
            f"{directive.value} {' '.join(tokens)}"
            for directive, tokens in policy.directives.items()
            if directive not in META_IGNORED_DIRECTIVES
        )

    def inject_meta(self, content: str, policy: SecurityPolicy) -> str:
        """Insert (or replace) the policy meta tag at the top of ``<head>``."""
        value = self.meta_content(policy).replace("&", "&amp;").replace('"', "&quot;")
        meta = f'<meta http-equiv="Content-Security-Policy" content="{value}">'

        content = EXISTING_META_PATTERN.sub("", content)
        head = HEAD_PATTERN.search(content)
        if head is None:
            return f"{meta}\n{content}"
        return f"{content[:head.end()]}{meta}{content[head.end():]}"

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "options": {
                "directives": self.policy.to_plugin_directives(),
                "hashAlgorithm": self.hash_algorithm,
            },
        }


def create_csp_plugin(
    policy: SecurityPolicy,
    hash_algorithm: str = "sha384",
) -> CspPlugin:
    """Create the CSP plugin for a policy.

    The policy is shared, never copied or modified; calling this repeatedly
    with the same policy yields equal plugins.
    """
    return CspPlugin(policy=policy, hash_algorithm=hash_algorithm)
