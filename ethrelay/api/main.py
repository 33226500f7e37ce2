from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog
import time

from ethrelay.api.routers.accounts import router as accounts_router
from ethrelay.api.routers.chain import router as chain_router
from ethrelay.api.routers.transfers import router as transfers_router
from ethrelay.config import settings
from ethrelay.utils.logging import setup_logging

setup_logging(settings.LOG_LEVEL)
logger = structlog.get_logger()

app = FastAPI(
    title="eth-relay",
    description="Ethereum block relay API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chain_router, tags=["Chain"])
app.include_router(accounts_router, tags=["Accounts"])
app.include_router(transfers_router, tags=["Transfers"])


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(
        "Unhandled exception",
        path=request.url.path,
        method=request.method,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.middleware("http")
async def log_requests(request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time

    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        process_time=round(process_time, 3),
    )
    return response


@app.get("/")
async def root():
    return {"message": "eth-relay API", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
