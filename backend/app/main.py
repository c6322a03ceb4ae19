from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.api import suites, test_cases, tasks
from app.exceptions import (
    AuthenticationException,
    CSVImportException,
    MergeException,
    QaHubException,
    RemoteServiceException,
    SuiteNotFoundError,
    SuiteTreeException,
    exception_to_response,
)
from app.logging_config import logger
from app.config import settings
from app.models import init_db

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.STORE_BACKEND.lower() == "sql":
        init_db()
    yield

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(suites.router)
app.include_router(test_cases.router)
app.include_router(tasks.router)


def status_code_for(exc: QaHubException) -> int:
    """例外の種類からHTTPステータスを決める"""
    if isinstance(exc, AuthenticationException):
        return 401
    if isinstance(exc, RemoteServiceException):
        return exc.status_code if 400 <= exc.status_code < 600 else 502
    if isinstance(exc, SuiteNotFoundError):
        return 404
    if isinstance(exc, (CSVImportException, SuiteTreeException, MergeException)):
        return 400
    return 500


@app.exception_handler(QaHubException)
async def qahub_exception_handler(request: Request, exc: QaHubException):
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({status_code}): {exc}")
    return JSONResponse(status_code=status_code, content=exception_to_response(exc))

@app.get("/health")
def health():
    return {"status": "ok"}
