import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .db import Base, engine, ensure_schema
from .errors import EssayLabError
from .settings import settings
from .routers import auth
from .routers import drafts
from .routers import feedback
from .routers import health
from .routers import topics

logger = logging.getLogger(__name__)


def configure_logging() -> None:
	logging.basicConfig(
		level=getattr(logging, settings.log_level.upper(), logging.INFO),
		format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
	)


@asynccontextmanager
async def lifespan(app: FastAPI):
	configure_logging()
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	logger.info("EssayLab API ready (draft retention %d)", settings.draft_retention_limit)
	yield


app = FastAPI(title="EssayLab API", lifespan=lifespan)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(topics.router)
app.include_router(drafts.router)
app.include_router(feedback.router)


@app.exception_handler(EssayLabError)
async def essaylab_error_handler(request: Request, exc: EssayLabError):
	if exc.status_code >= 500:
		logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
	return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
	return JSONResponse(status_code=422, content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
	logger.exception("Unhandled error on %s %s", request.method, request.url.path)
	return JSONResponse(status_code=500, content={"error": "Internal server error"})
