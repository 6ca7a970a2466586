# Models package (re-export feature modules for stable imports)
from .drawing import Drawing
from .metadata_document import MetadataDocument

__all__ = [
    "Drawing",
    "MetadataDocument",
]
