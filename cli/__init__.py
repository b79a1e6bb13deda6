"""
layerhost - Command Line Interface

Inspect what a default host would see: the merged configuration and the
resolved environment.
"""
from cli.main import app, main

__all__ = ["app", "main"]
