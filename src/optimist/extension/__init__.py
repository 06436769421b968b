from .starlette_extension import StarletteOptimistExtension

__all__ = ("StarletteOptimistExtension",)
