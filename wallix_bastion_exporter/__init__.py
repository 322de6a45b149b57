#!/usr/bin/env python3
"""
Wallix Bastion Exporter - Prometheus exporter for the Wallix Bastion API

Republishes counts of users, groups, devices, targets and sessions, plus
license usage and encryption state, on every Prometheus scrape.
"""

__version__ = '1.0.0'

# Import lazily to avoid dependency issues at package level
__all__ = ['WallixBastionExporter', 'WallixClient', 'MetricCatalog', 'load_config']


def __getattr__(name):
    if name == 'WallixBastionExporter':
        from .exporter import WallixBastionExporter
        return WallixBastionExporter
    if name == 'WallixClient':
        from .api_client import WallixClient
        return WallixClient
    if name == 'MetricCatalog':
        from .catalog import MetricCatalog
        return MetricCatalog
    if name == 'load_config':
        from .config import load_config
        return load_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
