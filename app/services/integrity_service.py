from dataclasses import dataclass, field
from typing import Mapping
from app.schemas.manifest import Manifest, VerifyResponse

@dataclass(frozen=True)
class ReconciliationResult:
  mismatches: frozenset = field(default_factory=frozenset)
  missing: frozenset = field(default_factory=frozenset)

  @property
  def valid(self) -> bool:
    return not self.mismatches and not self.missing

  def to_response(self) -> VerifyResponse:
    return VerifyResponse(
      valid=self.valid,
      mismatches=sorted(self.mismatches),
      missing=sorted(self.missing),
    )

def reconcile(server_manifest: Manifest, client_files: Mapping[str, str]) -> ReconciliationResult:
  """So sánh file của client với manifest của server

  Chỉ xét các file có trong manifest. File client gửi lên mà server
  không có thì bị bỏ qua (không báo là "thừa").

  Args:
      server_manifest (Manifest): Manifest hiện tại của server
      client_files (Mapping[str, str]): fileName -> hash do client báo

  Returns:
      ReconciliationResult: Danh sách file sai hash và file bị thiếu
  """
  mismatches = set()
  missing = set()
  for entry in server_manifest.files:
    client_hash = client_files.get(entry.file_name)
    if client_hash is None:
      missing.add(entry.file_name)
    elif client_hash != entry.hash:
      mismatches.add(entry.file_name)
  return ReconciliationResult(mismatches=frozenset(mismatches), missing=frozenset(missing))
