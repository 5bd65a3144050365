"""Buildkite client - pipeline linting, build status and local step runs."""

from importlib.metadata import PackageNotFoundError, version

from buildkite_client.schemas import Build, ClientSettings, Pipeline

__all__ = ["Build", "ClientSettings", "Pipeline"]

try:
    __version__ = version("buildkite-client")
except PackageNotFoundError:
    __version__ = "0.0.0"
