from fastapi import APIRouter

from app.api.v1.endpoints import connections, mappings, sync, relationships, schedule

api_router = APIRouter()
api_router.include_router(connections.router, prefix="/connections", tags=["connections"])
api_router.include_router(mappings.router, prefix="/mappings", tags=["mappings"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(relationships.router, prefix="/relationships", tags=["relationships"])
api_router.include_router(schedule.router, prefix="/schedule", tags=["schedule"])
