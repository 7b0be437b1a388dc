from fastapi import APIRouter

from audit_history.routers import audited_table, capture, logged_action

api_router = APIRouter()
api_router.include_router(audited_table.router)
api_router.include_router(capture.router)
api_router.include_router(logged_action.router)
api_router.include_router(logged_action.entity_router)

__all__ = ["api_router"]
