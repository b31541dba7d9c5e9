"""Tests for built-in policy definitions and the environment gate."""

import pytest

from bundleguard.environment import Environment, is_production_build, read_environment_tag
from bundleguard.exceptions import ConfigurationError
from bundleguard.models import Directive
from bundleguard.policy import (
    DEFAULT_POLICY,
    DEFAULT_VARIANT,
    POLICY_VARIANTS,
    SELF_POLICY,
    SELF_STRICT_DYNAMIC_POLICY,
    STRICT_DYNAMIC_POLICY,
    build_policy,
    get_policy_variant,
)


class TestPolicyVariants:
    """Test the built-in policy variants."""

    def test_default_is_strict_dynamic(self) -> None:
        """Test the default variant enforces strict-dynamic with trusted types."""
        assert DEFAULT_VARIANT == "strict-dynamic"
        assert DEFAULT_POLICY is STRICT_DYNAMIC_POLICY
        assert DEFAULT_POLICY.tokens(Directive.SCRIPT_SRC) == ("'strict-dynamic'",)
        assert DEFAULT_POLICY.tokens(Directive.REQUIRE_TRUSTED_TYPES_FOR) == ("'script'",)

    def test_shared_directives(self) -> None:
        """Test every variant carries the same base directives."""
        expected = {
            "default-src": "'none'",
            "base-uri": "'self'",
            "connect-src": "'self'",
            "worker-src": "'self' blob:",
            "img-src": "'self' blob: data: content:",
            "font-src": "'self'",
            "frame-src": "'self'",
            "manifest-src": "'self'",
            "object-src": "'none'",
            "style-src": "'self'",
        }
        for policy in POLICY_VARIANTS.values():
            flattened = policy.to_plugin_directives()
            for name, value in expected.items():
                assert flattened[name] == value

    def test_self_variant(self) -> None:
        """Test the self-only variant has no trusted types requirement."""
        assert SELF_POLICY.tokens("script-src") == ("'self'",)
        assert Directive.REQUIRE_TRUSTED_TYPES_FOR not in SELF_POLICY.directives

    def test_self_strict_dynamic_variant(self) -> None:
        """Test the combined variant keeps token order."""
        assert SELF_STRICT_DYNAMIC_POLICY.tokens("script-src") == ("'self'", "'strict-dynamic'")

    def test_get_policy_variant(self) -> None:
        """Test lookup by name."""
        assert get_policy_variant("self") is SELF_POLICY

    def test_get_unknown_variant(self) -> None:
        """Test unknown variant names fail with the available names listed."""
        with pytest.raises(ConfigurationError, match="available: self, self-strict-dynamic"):
            get_policy_variant("relaxed")


class TestBuildPolicy:
    """Test policy construction errors."""

    def test_build_from_mapping(self) -> None:
        """Test a mapping builds a policy."""
        policy = build_policy({"default-src": "'self'"})
        assert policy.to_header() == "default-src 'self'"

    def test_duplicate_pairs_are_configuration_errors(self) -> None:
        """Test repeated keys surface as configuration errors."""
        with pytest.raises(ConfigurationError, match="Duplicate CSP directive"):
            build_policy([("style-src", "'self'"), ("style-src", "'none'")])

    def test_invalid_directive_is_configuration_error(self) -> None:
        """Test model validation failures surface as configuration errors."""
        with pytest.raises(ConfigurationError) as exc_info:
            build_policy({"script-src": []})
        assert exc_info.value.details == {"stage": "policy"}


class TestEnvironmentGate:
    """Test the production gate and ambient tag lookup."""

    def test_production_passes(self) -> None:
        """Test the exact production marker passes."""
        assert is_production_build("production") is True
        assert is_production_build(Environment.PRODUCTION.value) is True

    @pytest.mark.parametrize(
        "tag",
        ["development", "test", "Production", "PRODUCTION", "prod", "", " production", None],
    )
    def test_other_tags_fail(self, tag: str | None) -> None:
        """Test anything but an exact match is non-production."""
        assert is_production_build(tag) is False

    def test_read_environment_tag(self) -> None:
        """Test the tag is read from the given mapping."""
        assert read_environment_tag(environ={"NODE_ENV": "production"}) == "production"

    def test_read_environment_tag_custom_variable(self) -> None:
        """Test a different variable name can be used."""
        environ = {"NODE_ENV": "development", "BUILD_ENV": "production"}
        assert read_environment_tag("BUILD_ENV", environ) == "production"

    def test_read_environment_tag_defaults_to_development(self) -> None:
        """Test unset and empty values fall back to development."""
        assert read_environment_tag(environ={}) == "development"
        assert read_environment_tag(environ={"NODE_ENV": ""}) == "development"

    def test_read_environment_tag_from_process(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the process environment is read at call time."""
        monkeypatch.setenv("NODE_ENV", "test")
        assert read_environment_tag() == "test"
        monkeypatch.setenv("NODE_ENV", "production")
        assert read_environment_tag() == "production"
