"""DoodleSync: local drawing records synced to cloud storage for 3D model generation."""

__version__ = "1.0.0"
