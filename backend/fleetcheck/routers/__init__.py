"""API routers."""
from .domains import router as domains_router
from .batches import router as batches_router
from .alerts import router as alerts_router
from .templates import router as templates_router
from .stats import router as stats_router

__all__ = ["domains_router", "batches_router", "alerts_router", "templates_router", "stats_router"]
