# fixloop/api/routers/fix_runs_router.py
"""
Run the multi-pass fixer over a project and return the run report
"""
from typing import Any, Callable, Dict, List, Optional, Union
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from fixloop.config import FixLoopSettings
from fixloop.errors import FixLoopError, ValidationError
from fixloop.services.execution.service import PassOrchestrator
from fixloop.services.log_service import logger

router = APIRouter()

OrchestratorFactory = Callable[[FixLoopSettings], PassOrchestrator]


class FixRunRequest(BaseModel):
    project_root: str
    paths: Optional[List[str]] = None
    level: Optional[int] = Field(default=None, ge=0, le=10)
    options: Optional[Dict[str, Union[bool, int, float, str]]] = None
    max_passes: Optional[int] = Field(default=None, ge=1, le=10)
    smart_mode: Optional[bool] = None
    keep_backups: Optional[bool] = None


def get_orchestrator_factory() -> OrchestratorFactory:
    return PassOrchestrator.from_settings


@router.post("")
def create_fix_run(
    request: FixRunRequest,
    factory: OrchestratorFactory = Depends(get_orchestrator_factory),
) -> Dict[str, Any]:
    try:
        settings = FixLoopSettings.from_env(**request.model_dump(exclude_none=True))
        orchestrator = factory(settings)
    except PydanticValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Fix run requested for %s", settings.project_root)
    try:
        result = orchestrator.run()
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FixLoopError as e:
        logger.error(f"Fix run failed: {e}")
        raise HTTPException(status_code=500, detail=f"Fix run failed: {str(e)}")
    return result.to_dict()
