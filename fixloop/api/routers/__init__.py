from .fix_runs_router import router as fix_runs
from .cache_router import router as cache
__all__ = ["fix_runs", "cache"]
