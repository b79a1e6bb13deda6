"""
layerhost - Configuration Builder

The layered store under construction: an ordered list of providers that
:meth:`ConfigurationBuilder.build` loads and merges into a
:class:`~configuration.root.ConfigurationRoot`. Providers added later
override earlier ones key by key. A builder builds once; adding providers
afterwards raises :class:`~core.errors.AlreadyBuiltError`.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from configuration.files import (
    DotEnvConfigurationProvider,
    JsonConfigurationProvider,
    SecretsConfigurationProvider,
)
from configuration.providers import (
    ChainedConfigurationProvider,
    CommandLineConfigurationProvider,
    ConfigurationProvider,
    EnvironmentVariablesConfigurationProvider,
    MemoryConfigurationProvider,
)
from configuration.root import ConfigurationRoot
from core.errors import AlreadyBuiltError
from observability.logging import get_logger

logger = get_logger("layerhost.configuration.builder")


class ConfigurationBuilder:
    """
    Collects providers in order and builds a merged snapshot.

    Usage:
        config = (
            ConfigurationBuilder()
            .add_in_memory({"Logging:Level": "Information"})
            .add_json_file("appsettings.json", optional=True)
            .add_environment_variables()
            .add_command_line(sys.argv[1:])
            .build()
        )
    """

    def __init__(self, properties: Optional[Dict[str, Any]] = None) -> None:
        self._providers: List[ConfigurationProvider] = []
        self.properties: Dict[str, Any] = properties if properties is not None else {}
        self._base_path: Optional[Path] = None
        self._built = False

    @property
    def providers(self) -> Tuple[ConfigurationProvider, ...]:
        return tuple(self._providers)

    @property
    def base_path(self) -> Optional[Path]:
        """Directory relative file paths are resolved against."""
        return self._base_path

    def set_base_path(self, path: Union[str, Path]) -> "ConfigurationBuilder":
        self._base_path = Path(path)
        return self

    def add(self, provider: ConfigurationProvider) -> "ConfigurationBuilder":
        """Append a provider; it outranks every provider added before it."""
        if self._built:
            raise AlreadyBuiltError(
                f"Cannot add provider '{provider.name}': the configuration was already built",
                target="ConfigurationBuilder.add",
            )
        self._providers.append(provider)
        return self

    # Convenience registrations -------------------------------------------

    def add_in_memory(self, data: Optional[Mapping[str, object]] = None) -> "ConfigurationBuilder":
        return self.add(MemoryConfigurationProvider(data))

    def add_environment_variables(
        self,
        prefix: str = "",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ConfigurationBuilder":
        return self.add(EnvironmentVariablesConfigurationProvider(prefix, environ))

    def add_command_line(
        self,
        args: Sequence[str],
        switch_mappings: Optional[Mapping[str, str]] = None,
    ) -> "ConfigurationBuilder":
        return self.add(CommandLineConfigurationProvider(args, switch_mappings))

    def add_json_file(
        self,
        path: Union[str, Path],
        optional: bool = False,
        reload_on_change: bool = False,
    ) -> "ConfigurationBuilder":
        return self.add(
            JsonConfigurationProvider(path, optional, reload_on_change, base_path=self._base_path)
        )

    def add_dotenv_file(
        self,
        path: Union[str, Path] = ".env",
        optional: bool = True,
        reload_on_change: bool = False,
    ) -> "ConfigurationBuilder":
        return self.add(
            DotEnvConfigurationProvider(path, optional, reload_on_change, base_path=self._base_path)
        )

    def add_secrets(
        self,
        application_name: str,
        base_dir: Union[str, Path],
        reload_on_change: bool = False,
    ) -> "ConfigurationBuilder":
        return self.add(SecretsConfigurationProvider(application_name, base_dir, reload_on_change))

    def add_configuration(self, configuration: ConfigurationRoot) -> "ConfigurationBuilder":
        """Add an existing snapshot as a single chained layer."""
        return self.add(ChainedConfigurationProvider(configuration))

    # Build ----------------------------------------------------------------

    def build(self) -> ConfigurationRoot:
        """Load every provider in order and return the merged snapshot."""
        if self._built:
            raise AlreadyBuiltError(
                "The configuration was already built",
                target="ConfigurationBuilder.build",
            )
        self._built = True
        for provider in self._providers:
            provider.load()
            logger.debug("Configuration provider loaded", provider=provider.name, entries=len(provider))
        return ConfigurationRoot(self._providers)
