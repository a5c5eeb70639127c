from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Tuple


class FileEntry(BaseModel):
  model_config = ConfigDict(frozen=True, populate_by_name=True)

  file_name: str = Field(..., alias="fileName", min_length=1)
  directory: str
  hash: str = Field(..., min_length=1)


class Manifest(BaseModel):
  """Immutable release manifest. Replaced wholesale, never mutated."""
  model_config = ConfigDict(frozen=True, populate_by_name=True)

  version: str = Field(..., min_length=1)
  files: Tuple[FileEntry, ...] = ()

  @field_validator("files")
  @classmethod
  def _unique_file_names(cls, files: Tuple[FileEntry, ...]):
    seen = set()
    for entry in files:
      if entry.file_name in seen:
        raise ValueError(f"Duplicate fileName in manifest: {entry.file_name}")
      seen.add(entry.file_name)
    return files
  def to_json_dict(self) -> dict:
    return self.model_dump(mode="json", by_alias=True)


class VersionResponse(BaseModel):
  version: str


class BatchRequest(BaseModel):
  files: List[str]


class VerifyResponse(BaseModel):
  valid: bool
  mismatches: List[str]
  missing: List[str]


class PatchCreatedResponse(BaseModel):
  status: str = "created"
  version: str
