import logging
import re
import uuid
from pathlib import Path, PurePosixPath

from atelier.models import StoredAsset

logger = logging.getLogger(__name__)

UPLOADS_PUBLIC_PREFIX = "/uploads"
TEST_RESULTS_PUBLIC_PREFIX = "/test-results"


def sanitize_filename(raw: str) -> str:
    # Browsers may send a full client path on some platforms; keep the last component only.
    name = PurePosixPath(raw.replace("\\", "/")).name
    name = re.sub(r"\s+", "-", name)
    return name or "upload"


def save_upload(upload_dir: Path, filename: str, content: bytes) -> StoredAsset:
    upload_dir.mkdir(parents=True, exist_ok=True)
    asset_id = uuid.uuid4()
    stored_name = f"{asset_id}-{sanitize_filename(filename)}"
    storage_path = upload_dir / stored_name
    storage_path.write_bytes(content)
    logger.info("Stored upload %s (%d bytes)", stored_name, len(content))
    return StoredAsset(
        id=asset_id,
        original_filename=filename,
        storage_path=storage_path,
        public_path=f"{UPLOADS_PUBLIC_PREFIX}/{stored_name}",
    )


def save_result(upload_dir: Path, source: StoredAsset, content: bytes) -> str:
    upload_dir.mkdir(parents=True, exist_ok=True)
    result_name = f"result-{source.filename}"
    (upload_dir / result_name).write_bytes(content)
    return f"{UPLOADS_PUBLIC_PREFIX}/{result_name}"


def save_probe_image(test_results_dir: Path, content: bytes) -> str:
    test_results_dir.mkdir(parents=True, exist_ok=True)
    probe_name = f"test-{uuid.uuid4()}.png"
    (test_results_dir / probe_name).write_bytes(content)
    return f"{TEST_RESULTS_PUBLIC_PREFIX}/{probe_name}"


def resolve_public_file(root: Path, name: str) -> Path | None:
    if not name or name != PurePosixPath(name).name or name in {".", ".."}:
        return None
    candidate = root / name
    if not candidate.is_file():
        return None
    return candidate
