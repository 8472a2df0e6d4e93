"""Gap detection and reconstruction for sparse data streams."""

from .gap_reconstructor import Gap, GapReconstructor

__all__ = ['Gap', 'GapReconstructor']
