"""
Tests for file-backed configuration providers.
"""
import pytest

from configuration import (
    ConfigurationBuilder,
    DotEnvConfigurationProvider,
    JsonConfigurationProvider,
    SecretsConfigurationProvider,
)
from core.errors import ConfigurationError


class TestJsonProvider:
    """Tests for JSON settings files."""

    def test_nested_document(self, write_json):
        path = write_json("appsettings.json", {
            "Logging": {"Level": "Debug"},
            "Price": 1.50,
            "Retries": 3,
            "Enabled": True,
            "Hosts": ["a", "b"],
            "Nothing": None,
        })
        provider = JsonConfigurationProvider(path)
        provider.load()
        assert dict(provider.items()) == {
            "Logging:Level": "Debug",
            "Price": "1.5",
            "Retries": "3",
            "Enabled": "true",
            "Hosts:0": "a",
            "Hosts:1": "b",
            "Nothing": "",
        }

    def test_number_text_is_preserved(self, tmp_path):
        path = tmp_path / "s.json"
        path.write_text('{"Price": 1.50, "Big": 12345678901234567890}', encoding="utf-8")
        provider = JsonConfigurationProvider(path)
        provider.load()
        assert provider.try_get("Price") == "1.50"
        assert provider.try_get("Big") == "12345678901234567890"

    def test_relative_path_uses_base_path(self, write_json, tmp_path):
        write_json("conf/app.json", {"a": "1"})
        config = ConfigurationBuilder().set_base_path(tmp_path / "conf").add_json_file("app.json").build()
        assert config.get("a") == "1"

    def test_missing_optional_file_contributes_nothing(self, tmp_path):
        provider = JsonConfigurationProvider(tmp_path / "missing.json", optional=True)
        provider.load()
        assert len(provider) == 0

    def test_missing_required_file_raises(self, tmp_path):
        provider = JsonConfigurationProvider(tmp_path / "missing.json")
        with pytest.raises(ConfigurationError) as exc_info:
            provider.load()
        assert "missing.json" in str(exc_info.value)

    def test_malformed_required_file_raises(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            JsonConfigurationProvider(path).load()

    def test_malformed_optional_file_contributes_nothing(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        provider = JsonConfigurationProvider(path, optional=True)
        provider.load()
        assert len(provider) == 0

    def test_top_level_array_is_rejected(self, write_json):
        path = write_json("list.json", [1, 2])
        with pytest.raises(ConfigurationError):
            JsonConfigurationProvider(path).load()

    def test_case_insensitive_duplicate_keys_are_rejected(self, tmp_path):
        path = tmp_path / "dup.json"
        path.write_text('{"Name": "a", "name": "b"}', encoding="utf-8")
        with pytest.raises(ConfigurationError):
            JsonConfigurationProvider(path).load()

    def test_empty_file_is_empty(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("  \n", encoding="utf-8")
        provider = JsonConfigurationProvider(path)
        provider.load()
        assert len(provider) == 0


class TestChangeDetection:
    """Tests for poll-based reload."""

    def test_unchanged_file_is_not_reloaded(self, write_json):
        path = write_json("app.json", {"a": "1"})
        provider = JsonConfigurationProvider(path, reload_on_change=True)
        provider.load()
        assert provider.check_for_changes() is False

    def test_changed_file_reloads_and_notifies(self, write_json):
        path = write_json("app.json", {"a": "1"})
        config = ConfigurationBuilder().add_json_file(path, reload_on_change=True).build()
        provider = config.providers[0]
        seen = []
        config.on_change(lambda root: seen.append(root.get("a")))

        write_json("app.json", {"a": "22", "b": "3"})

        assert provider.check_for_changes() is True
        assert config.get("a") == "22"
        assert config.get("b") == "3"
        assert seen == ["22"]

    def test_supports_reload_follows_flag(self, tmp_path):
        assert JsonConfigurationProvider(tmp_path / "a.json", reload_on_change=True).supports_reload
        assert not JsonConfigurationProvider(tmp_path / "a.json").supports_reload


class TestDotEnvProvider:
    """Tests for dotenv files."""

    def test_values_and_hierarchy(self, tmp_path):
        path = tmp_path / ".env"
        path.write_text('Logging__Level=Debug\nNAME="quoted value"\nEMPTY=\n', encoding="utf-8")
        provider = DotEnvConfigurationProvider(path)
        provider.load()
        assert provider.try_get("Logging:Level") == "Debug"
        assert provider.try_get("NAME") == "quoted value"
        assert provider.try_get("EMPTY") == ""


class TestSecretsProvider:
    """Tests for the per-application secrets file."""

    def test_reads_application_secrets(self, write_json, tmp_path):
        write_json("secrets/orders/secrets.json", {"Db": {"Password": "hunter2"}})
        provider = SecretsConfigurationProvider("orders", tmp_path / "secrets")
        provider.load()
        assert provider.try_get("Db:Password") == "hunter2"

    def test_missing_secrets_are_optional(self, tmp_path):
        provider = SecretsConfigurationProvider("orders", tmp_path / "nowhere")
        provider.load()
        assert len(provider) == 0
