"""Core data models for the BundleGuard build augmentation pipeline."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ConfigurationError

# Source keywords that are only meaningful when wrapped in single quotes
CSP_KEYWORDS = frozenset({
    "self",
    "none",
    "strict-dynamic",
    "unsafe-inline",
    "unsafe-eval",
    "unsafe-hashes",
    "wasm-unsafe-eval",
    "report-sample",
    "script",
    "allow-duplicates",
})

HASH_SOURCE_PATTERN = re.compile(r"^(sha256|sha384|sha512|nonce)-[A-Za-z0-9+/_=-]+$")


class Directive(str, Enum):
    """Known Content-Security-Policy directive kinds."""

    DEFAULT_SRC = "default-src"
    BASE_URI = "base-uri"
    CONNECT_SRC = "connect-src"
    WORKER_SRC = "worker-src"
    IMG_SRC = "img-src"
    FONT_SRC = "font-src"
    FRAME_SRC = "frame-src"
    MANIFEST_SRC = "manifest-src"
    MEDIA_SRC = "media-src"
    OBJECT_SRC = "object-src"
    STYLE_SRC = "style-src"
    SCRIPT_SRC = "script-src"
    FORM_ACTION = "form-action"
    FRAME_ANCESTORS = "frame-ancestors"
    REQUIRE_TRUSTED_TYPES_FOR = "require-trusted-types-for"
    TRUSTED_TYPES = "trusted-types"
    REPORT_URI = "report-uri"
    REPORT_TO = "report-to"


# Fetch directives that inherit default-src when they are not declared
DEFAULT_SRC_FALLBACKS = frozenset({
    Directive.CONNECT_SRC,
    Directive.WORKER_SRC,
    Directive.IMG_SRC,
    Directive.FONT_SRC,
    Directive.FRAME_SRC,
    Directive.MANIFEST_SRC,
    Directive.MEDIA_SRC,
    Directive.OBJECT_SRC,
    Directive.STYLE_SRC,
    Directive.SCRIPT_SRC,
})


class CrossOriginLoading(str, Enum):
    """Values accepted for the output cross-origin loading attribute."""

    ANONYMOUS = "anonymous"
    USE_CREDENTIALS = "use-credentials"


def _split_tokens(name: str, value: Any) -> tuple[str, ...]:
    """Normalize a directive value into an ordered tuple of tokens."""
    if isinstance(value, str):
        tokens = tuple(value.split())
    elif isinstance(value, (list, tuple)):
        collected: list[str] = []
        for item in value:
            if not isinstance(item, str):
                msg = f"Directive '{name}' tokens must be strings, got {type(item).__name__}"
                raise ValueError(msg)
            collected.extend(item.split())
        tokens = tuple(collected)
    else:
        msg = f"Directive '{name}' must be a string or a list of strings"
        raise ValueError(msg)

    if not tokens:
        msg = f"Directive '{name}' must have at least one source token"
        raise ValueError(msg)
    return tokens


def _check_token(name: str, token: str) -> None:
    """Reject tokens that a browser would silently ignore."""
    if token.lower() in CSP_KEYWORDS:
        msg = f"Directive '{name}' keyword {token!r} must be quoted, e.g. \"'{token}'\""
        raise ValueError(msg)

    if token.startswith("'") or token.endswith("'"):
        inner = token[1:-1] if len(token) > 1 and token[0] == token[-1] == "'" else None
        if inner is None:
            msg = f"Directive '{name}' has an unbalanced quoted token: {token}"
            raise ValueError(msg)
        if inner.lower() not in CSP_KEYWORDS and not HASH_SOURCE_PATTERN.match(inner):
            msg = f"Directive '{name}' has an unknown quoted source: {token}"
            raise ValueError(msg)


class SecurityPolicy(BaseModel):
    """Immutable Content-Security-Policy directive set."""

    model_config = ConfigDict(frozen=True)

    directives: Mapping[Directive, tuple[str, ...]] = Field(
        ...,
        description="Directive kind mapped to its ordered source tokens (read-only)",
    )

    @field_validator("directives", mode="before")
    @classmethod
    def normalize_directives(cls, v: Any) -> dict[Directive, tuple[str, ...]]:
        """Validate directive names and normalize values into token tuples."""
        if not isinstance(v, Mapping):
            msg = "Policy directives must be a mapping of directive name to sources"
            raise ValueError(msg)
        if not v:
            msg = "Policy must define at least one directive"
            raise ValueError(msg)

        normalized: dict[Directive, tuple[str, ...]] = {}
        for raw_name, value in v.items():
            try:
                directive = Directive(raw_name)
            except ValueError:
                msg = f"Unknown CSP directive: {raw_name!r}"
                raise ValueError(msg) from None
            if directive in normalized:
                msg = f"Duplicate CSP directive: {directive.value}"
                raise ValueError(msg)

            tokens = _split_tokens(directive.value, value)
            for token in tokens:
                _check_token(directive.value, token)
            if "'none'" in tokens and len(tokens) > 1:
                msg = f"Directive '{directive.value}' cannot combine 'none' with other sources"
                raise ValueError(msg)
            normalized[directive] = tokens
        return normalized

    @field_validator("directives")
    @classmethod
    def freeze_directives(
        cls,
        v: Mapping[Directive, tuple[str, ...]],
    ) -> Mapping[Directive, tuple[str, ...]]:
        return MappingProxyType(dict(v))

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, Any]]) -> SecurityPolicy:
        """Build a policy from key/value pairs, rejecting repeated keys."""
        collected: dict[str, Any] = {}
        for name, value in pairs:
            if name in collected:
                msg = f"Duplicate CSP directive: {name}"
                raise ValueError(msg)
            collected[name] = value
        return cls(directives=collected)

    @classmethod
    def from_plugin_directives(cls, mapping: Mapping[str, str]) -> SecurityPolicy:
        """Rebuild a policy from the CSP plugin's flat directive mapping."""
        return cls(directives=dict(mapping))

    def tokens(self, directive: Directive | str) -> tuple[str, ...]:
        """Get the source tokens for a directive (empty if undefined)."""
        return self.directives.get(Directive(directive), ())

    def to_plugin_directives(self) -> dict[str, str]:
        """Flatten into ``{"script-src": "'self' 'strict-dynamic'"}`` form."""
        return {
            directive.value: " ".join(tokens)
            for directive, tokens in self.directives.items()
        }

    def to_header(self) -> str:
        """Render the policy as a Content-Security-Policy header value."""
        return "; ".join(
            f"{name} {value}" for name, value in self.to_plugin_directives().items()
        )

    def with_sources(
        self,
        directive: Directive | str,
        sources: Iterable[str],
    ) -> SecurityPolicy:
        """Return a new policy with extra sources appended to one directive.

        A directive currently set to ``'none'`` is replaced by the new sources.
        Sources already present are not repeated. An undeclared fetch
        directive starts from the ``default-src`` tokens it was inheriting.
        """
        directive = Directive(directive)
        inherited = self.tokens(directive)
        if not inherited and directive in DEFAULT_SRC_FALLBACKS:
            inherited = self.tokens(Directive.DEFAULT_SRC)
        current = [t for t in inherited if t != "'none'"]
        for source in sources:
            if source not in current:
                current.append(source)
        if not current:
            return self

        updated = {d.value: tokens for d, tokens in self.directives.items()}
        updated[directive.value] = current
        return type(self)(directives=updated)


class OutputConfig(BaseModel):
    """Output section of a host bundler configuration."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    cross_origin_loading: CrossOriginLoading | bool | None = Field(
        default=None,
        alias="crossOriginLoading",
        description="Whether chunks are fetched with or without credentials",
    )


class BuildConfiguration(BaseModel):
    """Host bundler configuration, reduced to the parts augmentation touches.

    Unknown host keys are carried through untouched. Instances are never
    mutated; builder methods return new configurations.
    """

    model_config = ConfigDict(frozen=True, extra="allow", arbitrary_types_allowed=True)

    plugins: tuple[Any, ...] = Field(
        default_factory=tuple,
        description="Ordered build plugins; position defines processing order",
    )
    output: OutputConfig = Field(
        default_factory=OutputConfig,
        description="Output descriptor",
    )

    @classmethod
    def from_host(cls, data: Mapping[str, Any]) -> BuildConfiguration:
        """Create a configuration from the host's plain mapping form.

        Raises:
            ConfigurationError: If the mapping does not fit the host schema
        """
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            msg = f"Invalid build configuration: {e}"
            raise ConfigurationError(msg, details={"stage": "config"}) from e

    def with_plugins(self, *plugins: Any) -> BuildConfiguration:
        """Return a copy with plugins appended after the existing ones."""
        return self.model_copy(update={"plugins": self.plugins + tuple(plugins)})

    def with_output(self, **changes: Any) -> BuildConfiguration:
        """Return a copy with output attributes replaced."""
        return self.model_copy(update={"output": self.output.model_copy(update=changes)})

    def to_host(self) -> dict[str, Any]:
        """Convert back to the host's plain mapping form."""
        output = self.output.model_dump(
            by_alias=True,
            exclude_unset=True,
            exclude=set(self.output.model_extra or ()),
            mode="json",
        )
        output.update(self.output.model_extra or {})

        data: dict[str, Any] = {
            "plugins": [
                plugin.describe() if hasattr(plugin, "describe") else plugin
                for plugin in self.plugins
            ],
            "output": output,
        }
        data.update(self.model_extra or {})
        return data


class ProjectPaths(BaseModel):
    """Locations of the application sources scanned during augmentation."""

    root: Path = Field(default=Path("."), description="Project root directory")
    app_html: Path = Field(
        default=Path("public/index.html"),
        description="Entry HTML template, relative to root",
    )
    app_src: Path = Field(default=Path("src"), description="Source tree, relative to root")

    def resolved_html(self) -> Path:
        """Absolute-or-root-relative path of the entry HTML."""
        return self.root / self.app_html

    def resolved_src(self) -> Path:
        """Absolute-or-root-relative path of the source tree."""
        return self.root / self.app_src


class AugmenterSettings(BaseModel):
    """Settings that select which augmentation stages run and how."""

    policy: SecurityPolicy | None = Field(
        default=None,
        description="Policy to enforce; the built-in default variant when unset",
    )
    paths: ProjectPaths = Field(default_factory=ProjectPaths)
    purge_enabled: bool = Field(
        default=True,
        description="Whether the unused-style purge stage runs before CSP",
    )
    content_globs: list[str] = Field(
        default_factory=lambda: ["**/*"],
        description="Glob patterns, relative to the source tree, scanned for used selectors",
    )
    safelist: list[str] = Field(
        default_factory=list,
        description="Class, id or tag names never purged",
    )
    hash_algorithm: Literal["sha256", "sha384", "sha512"] = Field(
        default="sha384",
        description="Digest used for subresource integrity attributes",
    )
    environment_variable: str = Field(
        default="NODE_ENV",
        description="Environment variable holding the build environment tag",
    )

    @field_validator("content_globs")
    @classmethod
    def validate_globs(cls, v: list[str]) -> list[str]:
        """Reject empty or absolute glob patterns."""
        for pattern in v:
            if not pattern.strip():
                msg = "Content glob patterns must not be empty"
                raise ValueError(msg)
            if Path(pattern).is_absolute():
                msg = f"Content glob must be relative to the source tree: {pattern}"
                raise ValueError(msg)
        return v
