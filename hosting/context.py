"""Context shared with every configuration and service registration action."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from configuration.root import ConfigurationRoot
from hosting.environment import HostEnvironment


@dataclass
class HostBuilderContext:
    """
    What registration actions can see while the host is being built.

    ``configuration`` is the host configuration until the application
    configuration is built and the merged application configuration after.
    ``properties`` is the builder's own dictionary, shared by reference.
    """

    host_environment: HostEnvironment
    configuration: ConfigurationRoot
    properties: Dict[Any, Any] = field(default_factory=dict)
