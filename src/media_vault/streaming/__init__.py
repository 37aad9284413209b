from .manifest import ChunkManifest, ChunkSlice
from .range_resolver import RangeNotSatisfiable, RangeResolver, RangeResponse, parse_range

__all__ = [
    "ChunkManifest", "ChunkSlice",
    "RangeResolver", "RangeResponse", "RangeNotSatisfiable", "parse_range",
]
