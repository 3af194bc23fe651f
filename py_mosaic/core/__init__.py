"""
Mosaic cartogram construction.
"""

from .coordinates import Coordinate, GridType, HexCoordinate, SquareCoordinate
from .subdivision import Face, SubdivisionMap, WeakDual
from .cartogram import CellRegion, MosaicCartogram, MosaicRegion, compute_hole_boundaries, compute_holes
from .separator import Separator, SeparatorError
from .moves import INVALID_QUALITY, ReleaseMove, SlideMove, TakeMove
from .layout import ForceDirectedLayout, LayoutDriver, LayoutOptions, StaticLayout
from .polisher import Polisher
from .heuristic import HeuristicOptions, InvalidCartogramError, MosaicHeuristic
from .scaling import MultiResolutionRunner
from .alea_prng import AleaPRNG

__all__ = ['Coordinate', 'GridType', 'HexCoordinate', 'SquareCoordinate',
           'Face', 'SubdivisionMap', 'WeakDual',
           'CellRegion', 'MosaicCartogram', 'MosaicRegion', 'compute_hole_boundaries', 'compute_holes',
           'Separator', 'SeparatorError',
           'INVALID_QUALITY', 'ReleaseMove', 'SlideMove', 'TakeMove',
           'ForceDirectedLayout', 'LayoutDriver', 'LayoutOptions', 'StaticLayout',
           'Polisher', 'HeuristicOptions', 'InvalidCartogramError', 'MosaicHeuristic',
           'MultiResolutionRunner', 'AleaPRNG']
