"""Tests for provider registry and provider loading from settings."""

import pytest
from converge.config.settings import Settings
from converge.providers.local import LocalProvider
from converge.providers.memory import InMemoryProvider
from converge.providers.registry import ProviderRegistry, load_providers
from converge.utils.errors import ConfigError, UnknownResourceTypeError


class TestProviderRegistry:
    """Test provider lookup by resource type."""

    def test_exact_match_beats_pattern(self):
        registry = ProviderRegistry()
        fallback, buckets = InMemoryProvider(), InMemoryProvider()
        registry.register("*", fallback)
        registry.register("bucket", buckets)

        assert registry.get("bucket") is buckets
        assert registry.get("queue") is fallback

    def test_longest_pattern_wins(self):
        registry = ProviderRegistry()
        generic, specific = InMemoryProvider(), InMemoryProvider()
        registry.register("aws_*", generic)
        registry.register("aws_iam_*", specific)

        assert registry.get("aws_iam_role") is specific
        assert registry.get("aws_s3_bucket") is generic

    def test_unknown_type(self):
        registry = ProviderRegistry()
        registry.register("aws_*", InMemoryProvider())

        assert "gcp_bucket" not in registry
        with pytest.raises(UnknownResourceTypeError, match="gcp_bucket"):
            registry.get("gcp_bucket")


class TestLoadProviders:
    """Test building a registry from settings."""

    def test_default_is_local_for_every_type(self, tmp_path):
        settings = Settings(remote_dir=str(tmp_path / "remote"))
        registry = load_providers(settings)

        provider = registry.get("anything")
        assert isinstance(provider, LocalProvider)
        assert provider.remote_dir == tmp_path / "remote"

    def test_local_provider_policy_from_settings(self, tmp_path):
        settings = Settings.model_validate({
            "remote_dir": str(tmp_path),
            "local_provider": {"immutable": {"project": ["compute_type"]}, "create_before_destroy": ["dns_*"]},
        })
        provider = load_providers(settings).get("project")

        assert provider.immutable_attributes("project") == {"compute_type"}
        assert provider.replace_mode("dns_record").value == "CREATE_THEN_DELETE"

    def test_builtin_and_import_path(self):
        settings = Settings.model_validate({"providers": {
            "bucket": {"kind": "memory"},
            "queue": {"kind": "converge.providers.memory:InMemoryProvider", "options": {"delay_seconds": {}}},
        }})
        registry = load_providers(settings)

        assert isinstance(registry.get("bucket"), InMemoryProvider)
        assert isinstance(registry.get("queue"), InMemoryProvider)
        assert "topic" not in registry

    def test_invalid_kind(self):
        settings = Settings.model_validate({"providers": {"*": {"kind": "nosuchprovider"}}})
        with pytest.raises(ConfigError):
            load_providers(settings)

    def test_unimportable_module(self):
        settings = Settings.model_validate({"providers": {"*": {"kind": "no_such_module_xyz:Provider"}}})
        with pytest.raises(ConfigError, match="Cannot import"):
            load_providers(settings)

    def test_invalid_options(self):
        settings = Settings.model_validate({"providers": {"*": {"kind": "memory", "options": {"bogus": 1}}}})
        with pytest.raises(ConfigError, match="Invalid options"):
            load_providers(settings)

    def test_not_a_provider(self):
        settings = Settings.model_validate({"providers": {"*": {"kind": "collections:OrderedDict"}}})
        with pytest.raises(ConfigError, match="does not implement"):
            load_providers(settings)
