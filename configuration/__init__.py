"""
layerhost - Configuration Module

Layered key/value configuration: an ordered list of providers merged with
last-added-wins precedence into a read-only snapshot.

Usage:
    from configuration import ConfigurationBuilder

    config = (
        ConfigurationBuilder()
        .add_in_memory({"Feature:Enabled": "true"})
        .add_environment_variables()
        .build()
    )
    config.get("Feature:Enabled")
    config.get_section("Feature").get("Enabled")
"""

from configuration.builder import ConfigurationBuilder
from configuration.files import (
    DotEnvConfigurationProvider,
    FileConfigurationProvider,
    JsonConfigurationProvider,
    SecretsConfigurationProvider,
)
from configuration.keys import KEY_DELIMITER, combine, get_parent_path, get_section_key
from configuration.providers import (
    ChainedConfigurationProvider,
    CommandLineConfigurationProvider,
    ConfigurationProvider,
    EnvironmentVariablesConfigurationProvider,
    MemoryConfigurationProvider,
)
from configuration.root import ConfigurationRoot, ConfigurationSection, DebugViewRow

__all__ = [
    # Store
    "ConfigurationBuilder",
    "ConfigurationRoot",
    "ConfigurationSection",
    "DebugViewRow",
    # Providers
    "ConfigurationProvider",
    "MemoryConfigurationProvider",
    "EnvironmentVariablesConfigurationProvider",
    "CommandLineConfigurationProvider",
    "ChainedConfigurationProvider",
    "FileConfigurationProvider",
    "JsonConfigurationProvider",
    "DotEnvConfigurationProvider",
    "SecretsConfigurationProvider",
    # Keys
    "KEY_DELIMITER",
    "combine",
    "get_parent_path",
    "get_section_key",
]
