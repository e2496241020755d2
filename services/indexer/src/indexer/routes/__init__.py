from fastapi import APIRouter

from services.indexer.src.indexer.routes.charts import router as charts_router
from services.indexer.src.indexer.routes.protocols import router as protocols_router

api_router = APIRouter(prefix="/api")
api_router.include_router(protocols_router)
api_router.include_router(charts_router)

__all__ = ["api_router"]
