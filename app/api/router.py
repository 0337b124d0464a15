from fastapi.routing import APIRouter

from app.api.billing.route import router as billing_router
from app.api.credit_management.route import router as credit_management_router
from app.api.staging.route import router as staging_router
from app.api.team.route import router as team_router

api_router = APIRouter()
api_router.include_router(staging_router, prefix="/staging", tags=["staging"])
api_router.include_router(
    credit_management_router, prefix="/credit-management", tags=["credit-management"]
)
api_router.include_router(team_router, prefix="/team", tags=["team"])
api_router.include_router(billing_router, prefix="/billing", tags=["billing"])
