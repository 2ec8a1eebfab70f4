"""
kpsfm/errors.py

Exception types raised by the structure pipeline.
Every fatal condition has its own type so callers (and the CLI) can tell them apart.
"""

from __future__ import annotations


class StructureError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(StructureError, ValueError):
    """Invalid configuration or command-line value."""


class DescriberTypeError(ConfigError):
    """Unknown describer type string."""


class SceneLoadError(StructureError, RuntimeError):
    """The input scene cannot be read."""


class InvalidRegionsError(StructureError, RuntimeError):
    """Features/descriptors for a requested view and describer cannot be loaded."""


class MatchesLoadError(StructureError, RuntimeError):
    """Pairwise match data is unreadable or malformed."""


class SceneSaveError(StructureError, RuntimeError):
    """The output scene could not be written."""


class PipelineStageError(StructureError, RuntimeError):
    """A pipeline stage was run out of order."""
