# Routers package
from . import drawings_router

__all__ = [
    "drawings_router",
]
