from fastapi import APIRouter
from app.api.v1.endpoints import appointments

api_router = APIRouter()
api_router.include_router(appointments.router, prefix="/appointments", tags=["appointments"])
api_router.include_router(appointments.business_router, prefix="/business", tags=["business"])
