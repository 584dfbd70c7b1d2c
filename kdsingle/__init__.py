# kdsingle - Index des plus proches voisins par kd-tree unique

# Import main components for direct API access
from kdsingle.core.index import KDTreeSingleIndex
from kdsingle.core.params import KDTreeSingleIndexParams, SavedIndexParams, SearchParams
from kdsingle.core.point_view import PointView
from kdsingle.core.distance import L2Distance
from kdsingle.core.errors import (
    KDTreeError,
    InvalidInput,
    NotBuilt,
    OutOfRange,
    AlreadyRemoved,
    FormatError,
    DimensionMismatch,
    Truncated,
)

__version__ = "1.0.0"
