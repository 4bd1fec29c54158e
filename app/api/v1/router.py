from fastapi import APIRouter, Depends

from app.api.v1.endpoints import auth, health
from app.middleware.rate_limit import api_rate_limit

api_router = APIRouter(dependencies=[Depends(api_rate_limit)])
api_router.include_router(health.router)
api_router.include_router(auth.router)
