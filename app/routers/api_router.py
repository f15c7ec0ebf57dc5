from fastapi import APIRouter
from app.routers import attendance, leave, leave_manager, payroll

# Centralized API router hub
# This follows the "Leaf Node" pattern: Routers are aggregated here,
# and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(leave.router, tags=["Leave"])
api_router.include_router(leave_manager.router, tags=["Leave Manager"])
api_router.include_router(attendance.router, tags=["Attendance"])
api_router.include_router(payroll.router, tags=["Payroll"])
