# src/sheet_ingest/schemas.py
from __future__ import annotations

import datetime as dt
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr, field_validator

# One spreadsheet cell: a tagged union of scalar kinds
Cell = Optional[Union[StrictBool, StrictInt, StrictFloat, StrictStr]]


class ImportPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sheet_display_name: StrictStr = Field(alias="sheetDisplayName")
    json_data: List[Dict[str, Cell]] = Field(alias="jsonData")

    @field_validator("sheet_display_name")
    @classmethod
    def _display_name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("sheetDisplayName must not be blank")
        return value

    @field_validator("json_data")
    @classmethod
    def _rows_not_empty(cls, value: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not value:
            raise ValueError("jsonData must contain at least one row")
        return value


class ImportResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    table_name: str = Field(alias="tableName")


class SheetEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    display_name: str = Field(alias="displayName")
    table_name: str = Field(alias="tableName")
    created_at: Optional[dt.datetime] = Field(default=None, alias="createdAt")


class SheetList(BaseModel):
    sheets: List[SheetEntry]


class SheetRows(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    table_name: str = Field(alias="tableName")
    rows: List[Dict[str, Any]]
