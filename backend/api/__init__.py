"""
API Routers
"""
from .alerts import router as alerts_router
from .anomalies import router as anomalies_router

__all__ = ["alerts_router", "anomalies_router"]
