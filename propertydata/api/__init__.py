"""HTTP surface for the map query service."""
from .app import create_app
from .map_routes import router as map_router

__all__ = ['create_app', 'map_router']
