from .alerts import router as alerts_router
from .employees import router as employees_router
from .health import router as health_router
from .pairs import router as pairs_router
from .sessions import router as sessions_router
from .sites import router as sites_router

# for wildcard imports
__all__ = [
    "alerts_router",
    "employees_router",
    "health_router",
    "pairs_router",
    "sessions_router",
    "sites_router",
]
