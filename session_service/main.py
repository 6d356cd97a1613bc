"""Session Service API - page-transition tracking, session analytics and metric reporting"""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from session_service.config import get_settings
from session_service import dynamo
from session_service.routers import session_analytics

settings = get_settings()
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Session Service API",
    description="Session state, time breakdowns and activity metrics",
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

app.include_router(session_analytics.router)

app.add_middleware(CORSMiddleware, allow_origins=settings.CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])


@app.on_event("shutdown")
async def drain_background_tasks():
    # Completion events are fire-and-forget; let in-flight ones finish
    if session_analytics.get_session_analytics_service.cache_info().currsize:
        await session_analytics.get_session_analytics_service().wait_for_background_tasks()


@app.get("/")
async def root():
    return {"service": "session-service", "status": "running", "version": settings.VERSION}


@app.get("/health")
async def health():
    try:
        dynamo.db_client.session_table.meta.client.describe_table(TableName=settings.DYNAMODB_SESSION_TABLE)
        return {"status": "healthy", "dynamodb": "connected"}
    except Exception as e:
        logger.warning(f"Health check DynamoDB connection failed: {str(e)}")
        # Still healthy for ALB checks, DynamoDB may come back
        return {"status": "healthy", "dynamodb": "unavailable", "warning": str(e)[:100]}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8004)
