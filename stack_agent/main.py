import asyncio
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from stack_agent import db
from stack_agent.auth import require_agent_token
from stack_agent.builds import BuildTrigger, HttpBuildTrigger
from stack_agent.docker_ops import DockerRuntime
from stack_agent.entities import App, Build
from stack_agent.errors import StackAgentError
from stack_agent.events import EventHub
from stack_agent.lifecycle import LifecycleOrchestrator, app_payload
from stack_agent.logging_setup import setup_logging
from stack_agent.models import AppConfig, AppOut, BuildOut, MessageResponse
from stack_agent.runtime import RuntimeAdapter, image_tag
from stack_agent.store import AppStore
from stack_agent import settings
from stack_agent.streams import SSE_HEADERS, log_events, status_events

log = logging.getLogger(__name__)


def _build_out(build: Build) -> BuildOut:
    return BuildOut(id=build.id, appId=build.app_id, image=image_tag(build.id), createdAt=build.created_at)


def _app_out(app: App) -> AppOut:
    return AppOut(**app_payload(app))


def create_app(
    database_url: Optional[str] = None,
    runtime: Optional[RuntimeAdapter] = None,
    builder: Optional[BuildTrigger] = None,
    apps_root: Optional[str] = None,
) -> FastAPI:
    engine = db.make_engine(database_url or settings.STACK_DATABASE_URL)
    store = AppStore(db.make_session_factory(engine))
    hub = EventHub(queue_size=settings.STACK_SUBSCRIBER_QUEUE_SIZE)
    orchestrator = LifecycleOrchestrator(
        store=store,
        runtime=runtime or DockerRuntime(),
        builder=builder or HttpBuildTrigger(),
        hub=hub,
        apps_root=apps_root,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await db.create_schema(engine)
        log.info("stack agent ready: apps_dir=%s", apps_root or settings.STACK_APPS_DIR)
        yield
        await engine.dispose()

    api = FastAPI(title="stack-agent", lifespan=lifespan)
    api.state.orchestrator = orchestrator
    api.state.hub = hub

    @api.exception_handler(StackAgentError)
    async def _agent_error(_: Request, exc: StackAgentError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    guard = [Depends(require_agent_token)]

    @api.get("/internal/health")
    async def health():
        return {"ok": True}

    @api.get("/agent/apps", dependencies=guard)
    async def list_apps() -> List[AppOut]:
        return [AppOut(**item) for item in await orchestrator.list()]

    @api.post("/agent/apps", dependencies=guard, status_code=201)
    async def create(config: AppConfig) -> AppOut:
        return _app_out(await orchestrator.create(config))

    @api.put("/agent/apps/{app_id}", dependencies=guard)
    async def update(app_id: str, config: AppConfig) -> AppOut:
        return _app_out(await orchestrator.update(app_id, config))

    @api.delete("/agent/apps/{app_id}", dependencies=guard)
    async def delete(app_id: str, force: bool = False) -> MessageResponse:
        await orchestrator.delete(app_id, force=force)
        return MessageResponse(message="The app has been deleted")

    @api.post("/agent/apps/{app_id}/start", dependencies=guard)
    async def start(app_id: str):
        outcome = await orchestrator.start(app_id)
        if not outcome.started:
            return JSONResponse(
                status_code=202,
                content={"message": "A new build has been requested", "reason": outcome.reason, "build": outcome.build},
            )
        return {"message": "App is now running", "status": outcome.status.display if outcome.status else None}

    @api.post("/agent/apps/{app_id}/stop", dependencies=guard)
    async def stop(app_id: str) -> MessageResponse:
        await orchestrator.stop(app_id)
        return MessageResponse(message="App has stopped")

    @api.get("/agent/apps/{app_id}/builds", dependencies=guard)
    async def list_builds(app_id: str) -> List[BuildOut]:
        return [_build_out(b) for b in await orchestrator.builds(app_id)]

    @api.get("/agent/apps/{app_id}/builds/{build_id}", dependencies=guard)
    async def get_build(app_id: str, build_id: str) -> BuildOut:
        return _build_out(await orchestrator.build(app_id, build_id))

    @api.post("/agent/apps/{app_id}/builds", dependencies=guard, status_code=201)
    async def register_build(app_id: str) -> BuildOut:
        return _build_out(await orchestrator.register_build(app_id))

    @api.get("/agent/apps/{app_id}/realtime", dependencies=guard)
    async def listen(app_id: str):
        await orchestrator.require_app(app_id)
        return StreamingResponse(status_events(orchestrator, hub, app_id), media_type="text/event-stream", headers=SSE_HEADERS)

    @api.get("/agent/apps/{app_id}/logs/realtime", dependencies=guard)
    async def listen_logs(app_id: str):
        await orchestrator.ensure_streamable(app_id)
        cancel = asyncio.Event()
        return StreamingResponse(log_events(orchestrator, app_id, cancel), media_type="text/event-stream", headers=SSE_HEADERS)

    return api


setup_logging("stack-agent")

app = create_app()
