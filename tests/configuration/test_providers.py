"""
Tests for the in-process configuration providers.
"""
import pytest

from configuration import (
    ChainedConfigurationProvider,
    CommandLineConfigurationProvider,
    ConfigurationBuilder,
    ConfigurationProvider,
    EnvironmentVariablesConfigurationProvider,
    MemoryConfigurationProvider,
)
from configuration.keys import combine, flatten, get_parent_path, get_section_key, normalize
from core.errors import ConfigurationError


def _load(provider: ConfigurationProvider) -> dict:
    provider.load()
    return dict(provider.items())


class MutableProvider(ConfigurationProvider):
    """Provider whose backing data tests can change between loads."""

    def __init__(self, data):
        super().__init__("Mutable")
        self.source = dict(data)

    def load(self) -> None:
        self.set_data(self.source)


# =============================================================================
# KEYS
# =============================================================================


class TestKeys:
    """Tests for key helpers."""

    def test_combine_skips_empty_segments(self):
        assert combine("", "Logging", "Level") == "Logging:Level"

    def test_section_key_and_parent(self):
        assert get_section_key("a:b:c") == "c"
        assert get_parent_path("a:b:c") == "a:b"
        assert get_parent_path("a") is None

    def test_normalize_is_case_insensitive(self):
        assert normalize("Logging:LEVEL") == normalize("logging:level")

    def test_flatten_nested_values(self):
        flat = dict(flatten({"a": {"b": 1, "c": [1, 2]}, "d": True, "e": None, "f": {}}))
        assert flat == {"a:b": "1", "a:c:0": "1", "a:c:1": "2", "d": "true", "e": "", "f": ""}


# =============================================================================
# MEMORY
# =============================================================================


class TestMemoryProvider:
    """Tests for in-memory entries."""

    def test_nested_mapping_is_flattened(self):
        provider = MemoryConfigurationProvider({"Feature": {"Enabled": False}, "Name": "svc"})
        assert _load(provider) == {"Feature:Enabled": "false", "Name": "svc"}

    def test_later_duplicate_wins_case_insensitively(self):
        provider = MemoryConfigurationProvider({"key": "1", "KEY": "2"})
        provider.load()
        assert provider.try_get("Key") == "2"
        assert len(provider) == 1

    def test_set_keeps_original_casing(self):
        provider = MemoryConfigurationProvider({"Logging:Level": "Info"})
        provider.load()
        provider.set("logging:level", "Debug")
        assert provider.keys() == ["Logging:Level"]
        assert provider.try_get("LOGGING:LEVEL") == "Debug"


# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================


class TestEnvironmentVariablesProvider:
    """Tests for environment variable ingestion."""

    def test_double_underscore_becomes_delimiter(self):
        provider = EnvironmentVariablesConfigurationProvider(environ={"Logging__Level": "Debug"})
        assert _load(provider) == {"Logging:Level": "Debug"}

    def test_prefix_filters_and_is_removed(self):
        environ = {"LAYERHOST_ENVIRONMENT": "Development", "PATH": "/bin", "layerhost_contentRoot": "/app"}
        provider = EnvironmentVariablesConfigurationProvider("LAYERHOST_", environ)
        assert _load(provider) == {"ENVIRONMENT": "Development", "contentRoot": "/app"}

    def test_variable_equal_to_prefix_is_skipped(self):
        provider = EnvironmentVariablesConfigurationProvider("APP_", {"APP_": "x", "APP_A__B": "1"})
        assert _load(provider) == {"A:B": "1"}

    def test_reads_process_environment_by_default(self, monkeypatch):
        monkeypatch.setenv("LAYERHOST_TEST_VALUE", "42")
        provider = EnvironmentVariablesConfigurationProvider("LAYERHOST_TEST_")
        assert _load(provider) == {"VALUE": "42"}


# =============================================================================
# COMMAND LINE
# =============================================================================


class TestCommandLineProvider:
    """Tests for command line parsing."""

    @pytest.mark.parametrize(
        "args",
        [
            ["--Feature:Enabled", "false"],
            ["--Feature:Enabled=false"],
            ["/Feature:Enabled", "false"],
            ["/Feature:Enabled=false"],
            ["Feature:Enabled=false"],
        ],
    )
    def test_accepted_forms(self, args):
        provider = CommandLineConfigurationProvider(args)
        assert _load(provider) == {"Feature:Enabled": "false"}

    def test_value_may_contain_equals(self):
        provider = CommandLineConfigurationProvider(["--conn=a=b;c=d"])
        assert _load(provider) == {"conn": "a=b;c=d"}

    def test_last_occurrence_wins(self):
        provider = CommandLineConfigurationProvider(["--a=1", "--A=2"])
        provider.load()
        assert provider.try_get("a") == "2"

    def test_bare_tokens_are_ignored(self):
        provider = CommandLineConfigurationProvider(["run", "--a=1", "extra"])
        assert _load(provider) == {"a": "1"}

    def test_trailing_key_without_value_is_ignored(self):
        provider = CommandLineConfigurationProvider(["--a=1", "--dangling"])
        assert _load(provider) == {"a": "1"}

    def test_unmapped_short_switch_with_separate_value_is_ignored(self):
        provider = CommandLineConfigurationProvider(["-e", "Development"])
        assert _load(provider) == {}

    def test_unmapped_short_switch_with_equals_raises(self):
        provider = CommandLineConfigurationProvider(["-e=Development"])
        with pytest.raises(ConfigurationError):
            provider.load()

    def test_switch_mappings(self):
        provider = CommandLineConfigurationProvider(
            ["-e", "Development", "--root=/app"],
            switch_mappings={"-e": "environment", "--ROOT": "contentRoot"},
        )
        assert _load(provider) == {"environment": "Development", "contentRoot": "/app"}

    def test_switch_mapping_must_start_with_dash(self):
        with pytest.raises(ConfigurationError):
            CommandLineConfigurationProvider([], switch_mappings={"env": "environment"})

    def test_switch_mappings_must_be_unique_case_insensitively(self):
        with pytest.raises(ConfigurationError):
            CommandLineConfigurationProvider([], switch_mappings={"-e": "a", "-E": "b"})


# =============================================================================
# CHAINED
# =============================================================================


class TestChainedProvider:
    """Tests for exposing a built snapshot as a layer."""

    def test_exposes_inner_entries(self, build_config):
        inner = build_config({"a": "1", "b": {"c": "2"}})
        provider = ChainedConfigurationProvider(inner)
        assert _load(provider) == {"a": "1", "b:c": "2"}

    def test_inner_reload_propagates(self):
        source = MutableProvider({"Feature:Enabled": "true"})
        inner = ConfigurationBuilder().add(source).build()
        outer = ConfigurationBuilder().add_configuration(inner).build()

        source.source["Feature:Enabled"] = "false"
        source.reload()

        assert inner.get("Feature:Enabled") == "false"
        assert outer.get("Feature:Enabled") == "false"

    def test_close_stops_propagation(self):
        source = MutableProvider({"a": "1"})
        inner = ConfigurationBuilder().add(source).build()
        chained = ChainedConfigurationProvider(inner)
        outer = ConfigurationBuilder().add(chained).build()

        chained.close()
        source.source["a"] = "2"
        source.reload()

        assert inner.get("a") == "2"
        assert outer.get("a") == "1"
