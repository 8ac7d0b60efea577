# fixloop/api/routers/cache_router.py
"""
Type/flow cache statistics, maintenance and reset
"""
from typing import Any, Dict, Tuple
from fastapi import APIRouter, HTTPException, Query
from fixloop.config import FixLoopSettings
from fixloop.errors import CacheLockError, ValidationError
from fixloop.repositories.flow_cache import FlowCache
from fixloop.repositories.locks import FileLockManager
from fixloop.repositories.secure_files import validate_cache_directory
from fixloop.repositories.type_cache import TypeCache
from fixloop.services.log_service import logger

router = APIRouter()


def _open_caches(project_root: str) -> Tuple[TypeCache, FlowCache]:
    settings = FixLoopSettings.from_env(project_root=project_root)
    try:
        validate_cache_directory(settings.project_root)
        lock_manager = FileLockManager(settings.lock_dir) if settings.enable_locking else None
        type_cache = TypeCache(settings.type_cache_file, enable_locking=settings.enable_locking,
                               lock_manager=lock_manager, lock_timeout=settings.lock_timeout)
        flow_cache = FlowCache(settings.flow_cache_file, enable_locking=settings.enable_locking,
                               lock_manager=lock_manager, lock_timeout=settings.lock_timeout)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return type_cache, flow_cache


@router.get("/stats")
def cache_stats(project_root: str = Query(...)) -> Dict[str, Any]:
    type_cache, flow_cache = _open_caches(project_root)
    return {"type_cache": type_cache.get_cache_stats(), "flow_cache": flow_cache.get_cache_stats()}


@router.post("/maintenance")
def cache_maintenance(project_root: str = Query(...)) -> Dict[str, Any]:
    type_cache, flow_cache = _open_caches(project_root)
    try:
        report = {
            "type_cache": type_cache.perform_maintenance(),
            "flow_cache": flow_cache.perform_maintenance(),
        }
    except CacheLockError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Cache maintenance for %s: %s", project_root, report)
    return report


@router.delete("")
def clear_caches(project_root: str = Query(...)) -> Dict[str, Any]:
    type_cache, flow_cache = _open_caches(project_root)
    try:
        type_cache.clear()
        flow_cache.clear()
    except CacheLockError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "message": f"Caches cleared for {project_root}"}
