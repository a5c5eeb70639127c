from pathlib import Path
import json
import os
import uuid

def write_json(path: Path, data: dict) -> None:
  """Ghi JSON theo kiểu write-then-rename

  Người đọc file đồng thời chỉ thấy bản cũ hoặc bản mới hoàn chỉnh.

  Args:
      path (Path): Đường dẫn file đích
      data (dict): Dữ liệu cần ghi
  """
  path.parent.mkdir(parents=True, exist_ok=True)
  # Unique temp name so concurrent writers never share a temp file
  tmp = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.tmp")

  try:
    with tmp.open("w", encoding="utf-8") as f:
      json.dump(data, f, ensure_ascii=False, indent=2)
      f.flush()
      os.fsync(f.fileno())
    os.replace(tmp, path)
  except BaseException:
    tmp.unlink(missing_ok=True)
    raise

def read_json(path: Path) -> dict:
  """Đọc file JSON

  Raises:
      FileNotFoundError: File không tồn tại
      json.JSONDecodeError: Nội dung không phải JSON hợp lệ
  """
  with path.open("r", encoding="utf-8") as f:
    return json.load(f)
