from __future__ import annotations


class MergeSplitError(Exception):
    """Base class for every error raised by the sampler."""


class ConfigError(MergeSplitError, ValueError):
    """Missing or out-of-range parameter; raised before any sampling starts."""


class StructuralError(MergeSplitError, ValueError):
    """Graph or initial plan cannot support a contiguity-preserving chain."""


class DisconnectedRegionError(MergeSplitError):
    """Induced subgraph handed to the tree sampler is not connected."""


class CountySplitWarning(UserWarning):
    pass
