from contextlib import asynccontextmanager

from fastapi import FastAPI

from qaflow.api.v1.routes import router as v1_router
from qaflow.api.v1.routes_activities import pipeline_log_router
from qaflow.database.config import SessionLocal, init_db
from qaflow.logging_config import setup_logging
from qaflow.services.activity_service import ActivityRecorder
from qaflow.services.session_service import SessionRegistry


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()
    app.state.sessions = SessionRegistry(recorder=ActivityRecorder(SessionLocal))
    yield
    await app.state.sessions.aclose()


app = FastAPI(title="QAFlow", lifespan=lifespan)
app.include_router(v1_router)
app.include_router(pipeline_log_router)


@app.get("/healthz", include_in_schema=False)
def healthz():
    return {"ok": True}
