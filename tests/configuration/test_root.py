"""
Tests for the merged configuration snapshot, sections and binding.
"""
from typing import List

import pytest
from pydantic import BaseModel

from configuration import ConfigurationBuilder, ConfigurationProvider
from core.errors import AlreadyBuiltError, ConfigurationError


class ServerOptions(BaseModel):
    host: str
    port: int
    tags: List[str] = []


class MutableProvider(ConfigurationProvider):
    def __init__(self, data):
        super().__init__("Mutable")
        self.source = dict(data)

    def load(self) -> None:
        self.set_data(self.source)


# =============================================================================
# MERGE
# =============================================================================


class TestMerge:
    """Tests for last-added-wins precedence."""

    def test_last_added_provider_wins(self, build_config):
        config = build_config({"a": "1", "b": "1"}, {"a": "2"}, {"A": "3"})
        assert config.get("a") == "3"
        assert config.get("b") == "1"

    def test_lookup_is_case_insensitive(self, build_config):
        config = build_config({"Logging:Level": "Debug"})
        assert config.get("LOGGING:level") == "Debug"
        assert "logging:LEVEL" in config

    def test_first_seen_casing_is_kept(self, build_config):
        config = build_config({"Logging:Level": "Debug"}, {"logging:level": "Error"})
        assert list(config) == ["Logging:Level"]
        assert config.get("Logging:Level") == "Error"

    def test_missing_key(self, build_config):
        config = build_config({"a": "1"})
        assert config.get("missing") is None
        assert config.get("missing", "fallback") == "fallback"
        with pytest.raises(KeyError):
            config["missing"]

    def test_debug_view_names_winning_provider(self, build_config):
        config = (
            ConfigurationBuilder()
            .add_in_memory({"a": "1", "b": "1"})
            .add_environment_variables(environ={"a": "2"})
            .build()
        )
        rows = {row.key: row for row in config.debug_view()}
        assert rows["a"].value == "2"
        assert rows["a"].provider == "EnvironmentVariables"
        assert rows["b"].provider == "Memory"
        assert config.provider_for("A").name == "EnvironmentVariables"


# =============================================================================
# SECTIONS
# =============================================================================


class TestSections:
    """Tests for section views."""

    def test_section_reads_match_full_key_reads(self, build_config):
        config = build_config({"Feature": {"Enabled": "true", "Limits": {"Max": "5"}}})
        section = config.get_section("Feature")
        assert section.get("Enabled") == config.get("Feature:Enabled")
        assert section.get_section("Limits").get("Max") == config.get("Feature:Limits:Max")

    def test_section_key_value_and_existence(self, build_config):
        config = build_config({"a": {"b": "1"}, "c": "2"})
        assert config.get_section("a:b").key == "b"
        assert config.get_section("a:b").value == "1"
        assert config.get_section("a").value is None
        assert config.get_section("a").exists()
        assert config.get_section("c").exists()
        assert not config.get_section("zzz").exists()

    def test_children_are_ordered_numerically(self, build_config):
        items = {str(i): f"v{i}" for i in (10, 2, 1, 0)}
        config = build_config({"Items": items})
        keys = [child.key for child in config.get_section("Items").get_children()]
        assert keys == ["0", "1", "2", "10"]

    def test_top_level_children(self, build_config):
        config = build_config({"b": {"x": "1"}, "a": "2", "B": {"y": "3"}})
        assert [child.key for child in config.get_children()] == ["a", "b"]

    def test_as_dict_is_relative(self, build_config):
        config = build_config({"Db": {"Host": "h", "Port": "5"}, "Other": "x"})
        assert config.get_section("Db").as_dict() == {"Host": "h", "Port": "5"}

    def test_sections_see_reloaded_values(self):
        source = MutableProvider({"Db:Host": "old"})
        config = ConfigurationBuilder().add(source).build()
        section = config.get_section("Db")

        source.source["Db:Host"] = "new"
        source.reload()

        assert section.get("Host") == "new"


# =============================================================================
# BINDING
# =============================================================================


class TestBinding:
    """Tests for pydantic binding."""

    def test_bind_section(self, build_config):
        config = build_config({"Server": {"Host": "localhost", "Port": 8080, "Tags": ["a", "b"]}})

        class Model(BaseModel):
            Host: str
            Port: int
            Tags: List[str]

        bound = config.get_section("Server").bind(Model)
        assert bound.Host == "localhost"
        assert bound.Port == 8080
        assert bound.Tags == ["a", "b"]

    def test_to_nested_builds_lists_and_dicts(self, build_config):
        config = build_config({"host": "h", "port": "1", "tags": ["x", "y"], "extra": {"k": "v"}})
        assert config.to_nested() == {"host": "h", "port": "1", "tags": ["x", "y"], "extra": {"k": "v"}}

    def test_bind_failure_raises_configuration_error(self, build_config):
        config = build_config({"Server": {"host": "h", "port": "not-a-number"}})
        with pytest.raises(ConfigurationError):
            config.get_section("Server").bind(ServerOptions)


# =============================================================================
# RELOAD
# =============================================================================


class TestReload:
    """Tests for change notification."""

    def test_provider_change_rebuilds_and_notifies(self):
        source = MutableProvider({"a": "1"})
        config = ConfigurationBuilder().add_in_memory({"b": "x"}).add(source).build()
        seen = []
        config.on_change(lambda root: seen.append(root.get("a")))

        source.source = {"a": "2"}
        source.reload()

        assert config.get("a") == "2"
        assert config.get("b") == "x"
        assert seen == ["2"]

    def test_reload_keeps_precedence(self):
        low = MutableProvider({"a": "low"})
        high = MutableProvider({"a": "high"})
        config = ConfigurationBuilder().add(low).add(high).build()

        low.source = {"a": "low2"}
        low.reload()

        assert config.get("a") == "high"

    def test_unsubscribe(self):
        source = MutableProvider({"a": "1"})
        config = ConfigurationBuilder().add(source).build()
        seen = []
        unsubscribe = config.on_change(lambda root: seen.append(1))
        unsubscribe()
        source.reload()
        assert seen == []

    def test_root_reload_reloads_every_provider(self):
        source = MutableProvider({"a": "1"})
        config = ConfigurationBuilder().add(source).build()
        source.source = {"a": "2"}
        config.reload()
        assert config.get("a") == "2"


# =============================================================================
# BUILDER
# =============================================================================


class TestConfigurationBuilder:
    """Tests for the builder."""

    def test_build_twice_raises(self):
        builder = ConfigurationBuilder()
        builder.build()
        with pytest.raises(AlreadyBuiltError):
            builder.build()

    def test_add_after_build_raises(self):
        builder = ConfigurationBuilder()
        builder.build()
        with pytest.raises(AlreadyBuiltError):
            builder.add_in_memory({"a": "1"})

    def test_empty_builder_builds_empty_configuration(self):
        config = ConfigurationBuilder().build()
        assert len(config) == 0
        assert config.debug_view() == []

    def test_properties_are_shared(self):
        properties = {"key": "value"}
        builder = ConfigurationBuilder(properties)
        assert builder.properties is properties
