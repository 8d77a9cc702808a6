from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from peopleflow.core.logging import configure_logging
from peopleflow import models  # noqa: F401
from peopleflow.routers.auth import router as auth_router
from peopleflow.routers.people_settings import router as people_settings_router
from peopleflow.routers.persons import router as persons_router
from peopleflow.routers.roles import router as roles_router
from peopleflow.routers.workflow_instances import router as workflow_instances_router
from peopleflow.routers.workflow_steps import router as workflow_steps_router
from peopleflow.routers.workflow_templates import router as workflow_templates_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield


app = FastAPI(
    title="PeopleFlow Workflow Engine",
    lifespan=lifespan,
)


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception", extra={"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(workflow_templates_router)
app.include_router(workflow_instances_router)
app.include_router(workflow_steps_router)
app.include_router(persons_router)
app.include_router(roles_router)
app.include_router(people_settings_router)


@app.get("/")
def root():
    return {"status": "PeopleFlow workflow engine running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
