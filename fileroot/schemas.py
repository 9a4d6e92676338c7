from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FileEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    name: str
    path: str
    is_directory: bool = Field(serialization_alias='isDirectory')
    size: int
    modified: datetime


class FileContentOut(BaseModel):
    content: str


class WriteFileRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: Optional[str] = Field(default=None, alias='filePath')
    content: Optional[str] = None


class WriteFileResponse(BaseModel):
    success: bool = True
    path: str


class DeleteResponse(BaseModel):
    success: bool = True
