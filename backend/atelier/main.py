from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from atelier.api import events, health, jobs, status, units, watchdog, webhooks
from atelier.core.config import (
    BACKEND_PORT,
    BACKEND_TOKEN,
    BACKEND_WORKERS,
    DISPATCH_BASE_URL,
    DISPATCH_MODE,
    SCHEDULER_ENABLED,
    ensure_dirs,
)
from atelier.core.errors import ConflictError, EngineError, NotFoundError, ValidationError
from atelier.core.logging import attach_file_handler, logger
from atelier.db.connection import close_db, connect_db
from atelier.services import dispatch
from atelier.services.scheduler import start_scheduler, stop_scheduler
from atelier.services.stages import GRAPHS
from atelier.services.units import load_units, run_unit
from atelier.websocket.manager import manager

app = FastAPI(title="Atelier Job Engine", version="0.1.0")

app.include_router(health.router)
app.include_router(status.router)
app.include_router(jobs.router)
app.include_router(units.router)
app.include_router(webhooks.router)
app.include_router(watchdog.router)
app.include_router(events.router)

ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
}


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status_code == 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"reason": exc.reason, "message": exc.message}},
    )


def build_invoker() -> dispatch.Invoker:
    if DISPATCH_MODE == "http":
        return dispatch.HttpInvoker(DISPATCH_BASE_URL, token=BACKEND_TOKEN)
    return dispatch.QueueInvoker(run_unit, workers=BACKEND_WORKERS)


@app.on_event("startup")
async def on_startup() -> None:
    ensure_dirs()
    attach_file_handler()
    for graph in GRAPHS.values():
        graph.validate()
    load_units()
    await connect_db()
    invoker = build_invoker()
    await invoker.start()
    dispatch.set_invoker(invoker)
    if SCHEDULER_ENABLED:
        await start_scheduler()
    await manager.emit_log("info", f"backend started ({DISPATCH_MODE} dispatch)")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await stop_scheduler()
    invoker = dispatch.get_invoker()
    if invoker is not None:
        await invoker.stop()
        dispatch.set_invoker(None)
    await close_db()


def run() -> None:
    import uvicorn

    uvicorn.run(
        "atelier.main:app",
        host="127.0.0.1",
        port=BACKEND_PORT,
        log_level="info",
    )


if __name__ == "__main__":
    run()
