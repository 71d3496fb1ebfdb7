# src/sheet_ingest/api.py
from __future__ import annotations

import io
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any, Dict, List

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.middleware.cors import CORSMiddleware

from sheet_ingest.config import EnvVariables, Routes
from sheet_ingest.constants import CORS_HEADERS, PREFLIGHT_HEADERS
from sheet_ingest.errors import IngestError, InvalidImportRequest, UnknownSheetError
from sheet_ingest.generic_methods import DataReader
from sheet_ingest.ingestor import SheetIngestor
from sheet_ingest.logger import get_logger
from sheet_ingest.schemas import ImportPayload, ImportResponse, SheetEntry, SheetList, SheetRows

logger = get_logger(__name__)

SUCCESS_MESSAGE = "Spare parts list created and data imported successfully."
INVALID_INPUT_MESSAGE = "Invalid input: sheetDisplayName and jsonData (array with content) are required."


@lru_cache(maxsize=1)
def get_ingestor() -> SheetIngestor:
    return SheetIngestor.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    ingestor = app.dependency_overrides.get(get_ingestor, get_ingestor)()
    await run_in_threadpool(ingestor.provision_tables)
    yield


# ------------------------------------------------------------------------------
# App setup
# ------------------------------------------------------------------------------
class SheetRoutesCORSMiddleware(CORSMiddleware):
    """
    CORS for every route except the ingestion route, which answers its own
    preflight with a fixed header set.
    """

    async def __call__(self, scope, receive, send):
        if scope["type"] == "http" and scope["path"] == Routes.INGEST_ROUTE:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


app = FastAPI(title="Spare Parts Sheet Ingestion", lifespan=lifespan)
app.add_middleware(
    SheetRoutesCORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------------------
def _json(status_code: int, content: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=content, headers=CORS_HEADERS)


def _error_response(exc: IngestError) -> JSONResponse:
    if isinstance(exc, InvalidImportRequest):
        status_code = 400
    elif isinstance(exc, UnknownSheetError):
        status_code = 404
    else:
        status_code = 500
    content = {"error": exc.message}
    if exc.details is not None:
        content["details"] = exc.details
    return _json(status_code, content)


def _unexpected_response(exc: Exception) -> JSONResponse:
    logger.exception("Unexpected error: %s", exc)
    return _json(500, {"error": "An unexpected error occurred.", "details": str(exc)})


def _validation_details(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )


def _upload_size(upload: UploadFile) -> int:
    # measured on the spooled file, before anything is read into memory
    upload.file.seek(0, io.SEEK_END)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


async def _run_import(ingestor: SheetIngestor, display_name: str, rows: List[Dict[str, Any]]) -> JSONResponse:
    try:
        result = await run_in_threadpool(ingestor.ingest, display_name, rows)
    except IngestError as exc:
        return _error_response(exc)
    except Exception as exc:
        return _unexpected_response(exc)
    body = ImportResponse(message=SUCCESS_MESSAGE, table_name=result.table_name)
    return _json(200, body.model_dump(by_alias=True))


# ------------------------------------------------------------------------------
# Health
# ------------------------------------------------------------------------------
@app.get("/health")
def health():
    return {"status": "ok"}


# ------------------------------------------------------------------------------
# Ingestion endpoint
# ------------------------------------------------------------------------------
@app.options(Routes.INGEST_ROUTE)
def ingest_preflight():
    return PlainTextResponse("ok", headers=PREFLIGHT_HEADERS)


@app.api_route(Routes.INGEST_ROUTE, methods=["GET", "HEAD", "PUT", "PATCH", "DELETE"])
def ingest_method_not_allowed():
    return _json(405, {"error": "Method Not Allowed"})


@app.post(Routes.INGEST_ROUTE)
async def create_and_insert_spare_parts(request: Request, ingestor: SheetIngestor = Depends(get_ingestor)):
    """
    body:
      {
        "sheetDisplayName": "CNC Tools March",
        "jsonData": [{"Part Name": "Bolt", "Qty": 12}]
      }
    """
    try:
        body = await request.json()
    except ValueError:
        return _error_response(InvalidImportRequest(INVALID_INPUT_MESSAGE, details="Request body is not valid JSON."))
    except Exception as exc:
        return _unexpected_response(exc)

    try:
        payload = ImportPayload.model_validate(body)
    except ValidationError as exc:
        return _error_response(InvalidImportRequest(INVALID_INPUT_MESSAGE, details=_validation_details(exc)))

    return await _run_import(ingestor, payload.sheet_display_name, payload.json_data)


# ------------------------------------------------------------------------------
# Spreadsheet upload + registry discovery
# ------------------------------------------------------------------------------
@app.post("/sheets/upload")
async def upload_sheet(
    file: UploadFile = File(...),
    display_name: str = Form(...),
    ingestor: SheetIngestor = Depends(get_ingestor),
):
    """
    Read the first sheet of an uploaded .xlsx/.xls/.csv and import it.
    """
    size = _upload_size(file)
    if size > EnvVariables.MAX_UPLOAD_BYTES:
        return _error_response(
            InvalidImportRequest(f"Invalid input: file too large ({size} bytes).")
        )
    contents = await file.read()
    try:
        rows = DataReader().read_rows(contents, filename=file.filename or "")
    except Exception as exc:
        return _error_response(
            InvalidImportRequest("Invalid input: the spreadsheet could not be read.", details=str(exc))
        )
    return await _run_import(ingestor, display_name, rows)


@app.get("/sheets")
def list_sheets(ingestor: SheetIngestor = Depends(get_ingestor)):
    try:
        entries = [SheetEntry(**entry) for entry in ingestor.list_sheets()]
    except Exception as exc:
        return _unexpected_response(exc)
    return _json(200, SheetList(sheets=entries).model_dump(by_alias=True, mode="json"))


@app.get("/sheets/{table_name}/rows")
def sheet_rows(
    table_name: str,
    limit: int = Query(EnvVariables.ROW_FETCH_LIMIT, ge=1, le=EnvVariables.ROW_FETCH_LIMIT),
    ingestor: SheetIngestor = Depends(get_ingestor),
):
    try:
        rows = ingestor.fetch_rows(table_name, limit=limit)
    except IngestError as exc:
        return _error_response(exc)
    except Exception as exc:
        return _unexpected_response(exc)
    return _json(200, SheetRows(table_name=table_name, rows=rows).model_dump(by_alias=True, mode="json"))
