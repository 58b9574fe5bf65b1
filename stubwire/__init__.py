"""Stubwire - typed RPC stubs for schema-described services."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stubwire")
except PackageNotFoundError:
    __version__ = "(local)"
