from fastapi import APIRouter, Depends
from sqlalchemy import text

from engine.src.services.queue import get_queue_length
from gateway.src.services import EngineServices, get_services

router = APIRouter(tags=["health"])

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "pipewright-gateway"}

@router.get("/health/db")
def db_health_check(services: EngineServices = Depends(get_services)):
    try:
        with services.store.SessionLocal() as session:
            session.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": str(e)}

@router.get("/health/queue")
async def queue_health_check():
    try:
        queue_length = await get_queue_length()
        return {
            "status": "healthy",
            "queue_length": queue_length,
        }
    except Exception as e:
        return {"status": "unhealthy", "error": str(e)}
