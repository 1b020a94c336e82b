"""HTTP surface of an operator node."""

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter
from pydantic import BaseModel

from quorum.operator.executor import TaskExecutor
from quorum.shared.models import ServiceResponse, SignedResponse, Task
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str = "ok"
    identity: str


def _envelope(response: ServiceResponse) -> JSONResponse:
    return JSONResponse(status_code=response.status_code, content=response.model_dump(mode="json"))


def factory_router(executor: TaskExecutor) -> APIRouter:
    """Create the /operator router bound to an executor."""
    router = APIRouter(prefix="/operator")

    @router.post("/task")
    async def handle_task(task: Task) -> JSONResponse:
        try:
            signed = executor.execute(task)
        except Exception as e:
            logger.error(f"Task {task.value} failed: {type(e).__name__}: {e}")
            return _envelope(ServiceResponse.failure(f"Task computation failed: {e}", status_code=500))
        return _envelope(ServiceResponse[SignedResponse].ok("Task completed", signed))

    return router


def create_app(executor: TaskExecutor) -> FastAPI:
    app = FastAPI(title="Quorum Operator")
    app.include_router(factory_router(executor))

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(identity=executor.identity)

    return app
