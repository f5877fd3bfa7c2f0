from .routes_analyze import router

__all__ = ["router"]
