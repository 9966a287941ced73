from fastapi import APIRouter

from qaflow.api.v1.routes_activities import router as activities_router
from qaflow.api.v1.routes_pipeline import router as pipeline_router
from qaflow.api.v1.routes_scripts import router as scripts_router
from qaflow.api.v1.routes_stories import router as stories_router
from qaflow.api.v1.routes_testcases import router as testcases_router

# every v1 API lives under /api/v1
router = APIRouter(prefix="/api/v1")

router.include_router(activities_router)
router.include_router(pipeline_router)
router.include_router(stories_router)
router.include_router(testcases_router)
router.include_router(scripts_router)
