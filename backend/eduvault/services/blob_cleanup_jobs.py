from __future__ import annotations

import logging
from dataclasses import asdict

from botocore.exceptions import BotoCoreError, ClientError
from rq import get_current_job

from eduvault.core.queue import get_queue
from eduvault.services import storage
from eduvault.services.storage import BlobRef


log = logging.getLogger(__name__)


def delete_blobs_job(*, refs: list[dict]) -> dict:
    """Remove binaries that no content record points at any more.

    Safe to run repeatedly: missing objects and missing files are skipped.
    """

    job = get_current_job()

    deleted_blobs = 0
    deleted_files = 0
    failed: list[str] = []

    for raw in refs or []:
        ref = BlobRef.of(blob_id=raw.get("blob_id"), file_path=raw.get("file_path"))
        if ref is None:
            continue
        if ref.blob_id:
            try:
                storage.delete_blob(ref.blob_id)
                deleted_blobs += 1
            except (BotoCoreError, ClientError):
                log.exception("delete_blobs_job: delete_blob failed blob_id=%s", ref.blob_id)
                failed.append(ref.blob_id)
        if ref.file_path:
            try:
                path = storage.resolve_media_path(ref.file_path)
            except Exception:
                log.warning("delete_blobs_job: refusing path outside media root: %s", ref.file_path)
                failed.append(ref.file_path)
                continue
            if path.is_file():
                try:
                    path.unlink()
                    deleted_files += 1
                except OSError:
                    log.exception("delete_blobs_job: unlink failed path=%s", path)
                    failed.append(ref.file_path)

    out = {
        "ok": not failed,
        "deleted_blobs": int(deleted_blobs),
        "deleted_files": int(deleted_files),
        "failed": failed,
    }

    if job is not None:
        meta = dict(job.meta or {})
        meta.update(out)
        job.meta = meta
        job.save_meta()

    log.info(
        "delete_blobs_job: deleted_blobs=%s deleted_files=%s failed=%s",
        deleted_blobs,
        deleted_files,
        len(failed),
    )
    return out


def schedule_blob_deletion(refs: list[BlobRef]) -> str | None:
    """Enqueue removal of released binaries; returns the job id."""
    payload = [asdict(r) for r in refs if r is not None]
    if not payload:
        return None
    try:
        q = get_queue()
        job = q.enqueue(
            delete_blobs_job,
            refs=payload,
            job_timeout=60 * 10,
            result_ttl=60 * 60,
            failure_ttl=60 * 60 * 24,
        )
    except Exception:
        # Called after commit; the content change stands even if cleanup is lost.
        log.exception("schedule_blob_deletion: enqueue failed refs=%s", len(payload))
        return None
    return str(job.id)
