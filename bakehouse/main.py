import json
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .auth import hash_password, resolve_context
from .db import DB_ERRORS, init_db, seed_data
from .errors import BakehouseError, InvalidInput
from .handlers import ROUTES, ApiRequest, dispatch
from .logs import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

app = FastAPI(title="Bakehouse", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup() -> None:
    init_db()
    seed_data(hash_password("admin123"))
    logger.info("bakehouse_started")


async def _read_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        raise InvalidInput("Request body is not valid JSON")


def _endpoint(path: str):
    async def endpoint(request: Request) -> JSONResponse:
        try:
            body = await _read_body(request)
            context = await run_in_threadpool(
                resolve_context,
                request.headers.get("authorization"),
                request.headers.get("x-preview-role"),
            )
        except BakehouseError as exc:
            return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
        except DB_ERRORS as exc:
            logger.error("request_context_failed", path=request.url.path, error=str(exc))
            return JSONResponse(status_code=500, content={"error": "Internal server error"})

        api_request = ApiRequest(
            method=request.method,
            path=request.url.path,
            path_params={k: str(v) for k, v in request.path_params.items()},
            query=dict(request.query_params),
            body=body,
            context=context,
        )
        response = await run_in_threadpool(dispatch, path, api_request)
        return JSONResponse(status_code=response.status, content=response.body)

    endpoint.__name__ = "route_" + path.strip("/").replace("/", "_").replace("{", "").replace("}", "").replace("-", "_")
    return endpoint


for route_path, verbs in ROUTES.items():
    app.add_api_route(route_path, _endpoint(route_path), methods=list(verbs))
