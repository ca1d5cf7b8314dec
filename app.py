"""
app.py
Registrant records API (FastAPI).
Run: python app.py  (or: uvicorn app:app)
"""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Optional

import uvicorn
from fastapi import APIRouter, Body, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import auth
import config
import db
import repository
from repository import (
    DuplicateRegistrationError,
    InvalidIdentifierError,
    RecordNotFoundError,
    StoreUnavailableError,
)
from schemas import DeleteRequest, ExistsResponse, MessageResponse, RecordListResponse
from utils import EmptyFieldMappingError, FieldMappingError

logger = config.get_logger(__name__)

_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": {"code": code, "message": message}})


@contextmanager
def translate_errors(action: str, empty_message: str | None = None):
    """Map domain errors raised inside an operation to HTTP responses."""
    try:
        yield
    except HTTPException:
        raise
    except EmptyFieldMappingError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "records.no_fields", "message": empty_message or str(exc)},
        ) from exc
    except FieldMappingError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "records.invalid_payload", "message": str(exc)},
        ) from exc
    except InvalidIdentifierError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "records.invalid_identifier", "message": str(exc)},
        ) from exc
    except RecordNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "records.not_found", "message": str(exc)},
        ) from exc
    except DuplicateRegistrationError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "records.duplicate_regno", "message": str(exc)},
        ) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "store.unavailable", "message": str(exc)},
        ) from exc
    except Exception as exc:
        logger.exception("Unexpected error during %s", action)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "records.internal_error", "message": f"Server error during {action}"},
        ) from exc


router = APIRouter(prefix="/records", tags=["Records"])


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a registrant record.")
def create_record(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    with translate_errors("creation", empty_message="No fields provided for creation"):
        return repository.create_record(payload)


@router.get("", response_model=RecordListResponse, summary="List, search and filter records.")
def list_records(
    q: str = "",
    plan: Optional[str] = None,
    food_habits: Optional[str] = None,
    caste: Optional[str] = Query(None, description="Comma separated"),
    yob: Optional[str] = Query(None, description="Comma separated years"),
    currentResidingLocation: Optional[str] = None,
    gender: Optional[str] = None,
    education: Optional[str] = None,
    marital_status: Optional[str] = None,
    page: int = 1,
    limit: int = repository.DEFAULT_PAGE_SIZE,
) -> dict[str, Any]:
    with translate_errors("listing"):
        return repository.list_records(
            q=q,
            plan=plan,
            food_habits=food_habits,
            caste=caste,
            yob=yob,
            current_residence=currentResidingLocation,
            gender=gender,
            education=education,
            marital_status=marital_status,
            page=page,
            limit=limit,
        )


@router.get("/filters", summary="Distinct values for each filterable field.")
def read_filter_options() -> dict[str, list[Any]]:
    with translate_errors("loading filter options"):
        return repository.filter_options()


@router.get("/renewals-due", summary="Records whose plan expires within the next `days` days.")
def read_renewals_due(days: int = Query(10, ge=0, le=repository.MAX_RENEWAL_DAYS)) -> list[dict[str, Any]]:
    with translate_errors("fetching renewals"):
        return repository.renewals_due(days=days)


@router.get("/check-id/{regno}", response_model=ExistsResponse, summary="Check whether a regno is taken.")
def check_registration(regno: str) -> ExistsResponse:
    with translate_errors("checking regno"):
        return ExistsResponse(exists=repository.registration_exists(regno))


@router.get("/{record_id}", summary="Fetch one record by internal id.")
def read_record(record_id: str) -> dict[str, Any]:
    with translate_errors("fetching record"):
        return repository.get_record(record_id)


@router.put("/{regno}", summary="Partially update a record by regno.")
def update_record(regno: str, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
    with translate_errors("update", empty_message="No valid fields provided for update"):
        return repository.update_record(regno, payload)


@router.patch("/{regno}/delete", response_model=MessageResponse, summary="Soft delete a record by regno.")
def delete_record(regno: str, payload: Optional[DeleteRequest] = None) -> MessageResponse:
    deleted_by = payload.deletedBy if payload else None
    with translate_errors("delete"):
        repository.soft_delete_record(regno, deleted_by=deleted_by)
    return MessageResponse(message="Record successfully marked as deleted")


def create_app(api_key_hash: str | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            db.init_db()
        except sqlite3.Error as exc:
            # requests will keep answering 503 until the store is reachable
            logger.error("Database initialisation failed: %s", exc)
        yield

    app = FastAPI(title="Registrant Records API", lifespan=lifespan)
    app.state.api_key_hash = api_key_hash or auth.configured_key_hash()

    @app.middleware("http")
    async def guard_requests(request: Request, call_next):
        """API key on writes, then one store availability check per request."""
        if request.method == "OPTIONS":
            return await call_next(request)
        if request.method in _WRITE_METHODS:
            key = request.headers.get("x-api-key")
            if not await run_in_threadpool(auth.verify_api_key, key, app.state.api_key_hash):
                return _error(status.HTTP_401_UNAUTHORIZED, "auth.invalid_api_key", "Unauthorized: Invalid API Key")
        try:
            await run_in_threadpool(repository.check_available)
        except StoreUnavailableError as exc:
            return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "store.unavailable", str(exc))
        return await call_next(request)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "x-api-key"],
        allow_credentials=True,
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        detail = exc.detail
        if exc.status_code == status.HTTP_404_NOT_FOUND and not isinstance(detail, dict):
            detail = {"code": "route.not_found", "message": f"Route not found: {request.method} {request.url.path}"}
        return JSONResponse(status_code=exc.status_code, content={"detail": detail}, headers=exc.headers)

    @app.get("/health", tags=["Default"])
    def health_check():
        return {"status": "ok"}

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=config.HOST, port=config.PORT)
