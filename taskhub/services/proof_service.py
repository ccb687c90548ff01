"""Proof file handling.

Uploads are validated and staged on local disk while the request is still
open; moving them into object storage and deleting stored objects happens in
Celery jobs dispatched after the owning transaction commits.
"""
from __future__ import annotations

import logging
import mimetypes
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional
from uuid import UUID

from fastapi import UploadFile
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import settings
from taskhub.core.exceptions import ProofLimitError
from taskhub.core.outbox import Outbox
from taskhub.core.time import now_utc
from taskhub.localization.helpers import get_translation
from taskhub.models.task import ProofSource, SharedProofs, Task, TaskProof, TaskResponse, TaskSharedProof
from taskhub.services.file_validator import HEADER_SIZE, file_validator
from taskhub.services.settings_service import (
    MAX_FILES_PER_RESPONSE,
    MAX_TOTAL_UPLOAD_SIZE,
    settings_service,
)
from taskhub.services.storage_service import StorageError, storage_service

logger = logging.getLogger(__name__)

KIND_PROOF = "proof"
KIND_SHARED_PROOF = "shared_proof"


class ProofStorageError(Exception):
    """A staged proof could not be moved into storage."""


@dataclass
class ValidatedUpload:
    upload: UploadFile
    mime: str


def _upload_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    upload.file.seek(0, 2)
    size = upload.file.tell()
    upload.file.seek(0)
    return size


def _extension(original_name: str, mime: str) -> str:
    suffix = Path(original_name or "").suffix.lower().lstrip(".")
    if suffix and len(suffix) <= 10 and suffix.isalnum():
        return suffix
    guessed = mimetypes.guess_extension(mime or "")
    return guessed.lstrip(".") if guessed else "bin"


def build_storage_key(
    dealership_id: Optional[UUID],
    task_id: UUID,
    original_name: str,
    mime: str,
    kind: str = KIND_PROOF,
    now: Optional[datetime] = None,
) -> str:
    """``dealerships/{id|global}/tasks/{task}/{yyyy}/{mm}/{dd}/{kind}_{uuid}.{ext}``"""
    now = now or now_utc()
    unit = str(dealership_id) if dealership_id is not None else "global"
    return (
        f"dealerships/{unit}/tasks/{task_id}/{now:%Y/%m/%d}/"
        f"{kind}_{uuid.uuid4().hex}.{_extension(original_name, mime)}"
    )


class ProofService:
    """Staging, limits, storage and deletion of task proofs."""

    async def validate_uploads(
        self,
        db: AsyncSession,
        files: List[UploadFile],
        dealership_id: Optional[UUID],
    ) -> List[ValidatedUpload]:
        """Check batch limits and file contents. Nothing is written."""
        if not files:
            return []

        max_files = await settings_service.get_int(db, MAX_FILES_PER_RESPONSE, dealership_id)
        max_total = await settings_service.get_int(db, MAX_TOTAL_UPLOAD_SIZE, dealership_id)

        if len(files) > max_files:
            raise ProofLimitError(get_translation("proofs.too_many_files", limit=max_files))
        if sum(_upload_size(upload) for upload in files) > max_total:
            raise ProofLimitError(get_translation("proofs.batch_too_large", limit=max_total))

        validated = []
        for upload in files:
            head = await upload.read(HEADER_SIZE)
            await upload.seek(0)
            mime = file_validator.validate(upload.filename or "file", upload.content_type or "", head)
            validated.append(ValidatedUpload(upload=upload, mime=mime))
        return validated

    def stage(self, uploads: List[ValidatedUpload]) -> List[dict]:
        """Copy uploads into the temp directory; returns job payload entries."""
        temp_dir = Path(settings.PROOF_TEMP_DIR)
        temp_dir.mkdir(parents=True, exist_ok=True)

        staged = []
        for item in uploads:
            original_name = item.upload.filename or "file"
            path = temp_dir / f"{uuid.uuid4().hex}.{_extension(original_name, item.mime)}"
            item.upload.file.seek(0)
            with open(path, "wb") as out:
                shutil.copyfileobj(item.upload.file, out)
            staged.append({
                "path": str(path),
                "original_name": original_name,
                "mime": item.mime,
                "size": path.stat().st_size,
            })
        return staged

    @staticmethod
    def discard_staged(files: Iterable[dict]) -> None:
        for item in files:
            Path(item["path"]).unlink(missing_ok=True)

    @staticmethod
    async def count_response_proofs(db: AsyncSession, response_id: UUID) -> int:
        result = await db.execute(
            select(func.count(TaskProof.id)).where(TaskProof.task_response_id == response_id)
        )
        return result.scalar_one()

    @staticmethod
    async def count_shared_proofs(db: AsyncSession, task_id: UUID) -> int:
        result = await db.execute(
            select(func.count(TaskSharedProof.id)).where(TaskSharedProof.task_id == task_id)
        )
        return result.scalar_one()

    @staticmethod
    async def count_proofs(db: AsyncSession, source: ProofSource) -> int:
        """Proofs a response is judged on: its own rows or the task's shared ones."""
        if isinstance(source, SharedProofs):
            return await ProofService.count_shared_proofs(db, source.task_id)
        return await ProofService.count_response_proofs(db, source.response_id)

    @staticmethod
    async def task_has_any_proofs(db: AsyncSession, task_id: UUID) -> bool:
        """Any assignee's own proof or a shared proof exists for the task."""
        own = await db.execute(
            select(TaskProof.id)
            .join(TaskResponse, TaskResponse.id == TaskProof.task_response_id)
            .where(TaskResponse.task_id == task_id)
            .limit(1)
        )
        if own.scalar_one_or_none() is not None:
            return True
        return await ProofService.count_shared_proofs(db, task_id) > 0

    @staticmethod
    async def delete_response_proofs(db: AsyncSession, response_ids: List[UUID], outbox: Outbox) -> int:
        """Remove own proof rows of the responses; objects are deleted after commit."""
        if not response_ids:
            return 0
        result = await db.execute(
            select(TaskProof.file_path).where(TaskProof.task_response_id.in_(response_ids))
        )
        keys = list(result.scalars().all())
        if keys:
            await db.execute(delete(TaskProof).where(TaskProof.task_response_id.in_(response_ids)))
            _queue_deletion(outbox, keys)
        return len(keys)

    @staticmethod
    async def delete_shared_proofs(db: AsyncSession, task_id: UUID, outbox: Outbox) -> int:
        """Remove the task's shared proof rows; objects are deleted after commit."""
        result = await db.execute(
            select(TaskSharedProof.file_path).where(TaskSharedProof.task_id == task_id)
        )
        keys = list(result.scalars().all())
        if keys:
            await db.execute(delete(TaskSharedProof).where(TaskSharedProof.task_id == task_id))
            _queue_deletion(outbox, keys)
        return len(keys)

    async def store_proofs(
        self,
        db: AsyncSession,
        response_id: UUID,
        files: List[dict],
        dealership_id: Optional[UUID],
        task_id: UUID,
    ) -> List[TaskProof]:
        """Move staged files into storage as the response's own proofs.

        All-or-nothing: a missing staged file or a storage failure rolls the
        batch back and raises ProofStorageError so the job can retry.
        """
        result = await db.execute(select(TaskResponse).where(TaskResponse.id == response_id))
        response = result.scalar_one_or_none()
        if response is None:
            logger.warning("Response %s not found, discarding %d staged proofs", response_id, len(files))
            self.discard_staged(files)
            return []

        max_files = await settings_service.get_int(db, MAX_FILES_PER_RESPONSE, dealership_id)
        capacity = max(0, max_files - await self.count_response_proofs(db, response_id))
        accepted, rejected = files[:capacity], files[capacity:]
        if rejected:
            logger.warning(
                "Response %s is at its proof limit (%d), rejecting %d files",
                response_id,
                max_files,
                len(rejected),
            )
            self.discard_staged(rejected)

        uploaded_keys: List[str] = []
        proofs: List[TaskProof] = []
        try:
            for item in accepted:
                if not Path(item["path"]).exists():
                    raise ProofStorageError(f"Staged file is missing: {item['path']}")
                key = build_storage_key(dealership_id, task_id, item["original_name"], item["mime"], KIND_PROOF)
                storage_service.upload_file(item["path"], key, item["mime"])
                uploaded_keys.append(key)
                proof = TaskProof(
                    task_response_id=response_id,
                    file_path=key,
                    original_filename=item["original_name"],
                    mime_type=item["mime"],
                    file_size=item["size"],
                )
                db.add(proof)
                proofs.append(proof)
            await db.commit()
        except (ProofStorageError, StorageError) as exc:
            await db.rollback()
            self._delete_quietly(uploaded_keys)
            raise ProofStorageError(str(exc)) from exc
        except Exception:
            await db.rollback()
            self._delete_quietly(uploaded_keys)
            raise

        self.discard_staged(accepted)
        return proofs

    async def store_shared_proofs(
        self,
        db: AsyncSession,
        task_id: UUID,
        files: List[dict],
        dealership_id: Optional[UUID],
    ) -> List[TaskSharedProof]:
        """Move staged files into storage as shared proofs of a task.

        Rows whose object is missing are purged first. Files beyond the
        remaining capacity are refused; existing proofs are never evicted.
        A single failing file does not stop the rest.
        """
        result = await db.execute(select(Task).where(Task.id == task_id))
        task = result.scalar_one_or_none()
        if task is None:
            logger.warning("Task %s not found, discarding %d staged shared proofs", task_id, len(files))
            self.discard_staged(files)
            return []

        existing_result = await db.execute(select(TaskSharedProof).where(TaskSharedProof.task_id == task_id))
        existing = list(existing_result.scalars().all())
        ghosts = [proof for proof in existing if not storage_service.file_exists(proof.file_path)]
        for ghost in ghosts:
            logger.info("Purging shared proof %s with missing object %s", ghost.id, ghost.file_path)
            await db.delete(ghost)
        if ghosts:
            await db.flush()

        max_files = await settings_service.get_int(db, MAX_FILES_PER_RESPONSE, dealership_id)
        capacity = max(0, max_files - (len(existing) - len(ghosts)))
        accepted, rejected = files[:capacity], files[capacity:]
        if rejected:
            logger.warning(
                "Task %s is at its shared proof limit (%d), rejecting %d files",
                task_id,
                max_files,
                len(rejected),
            )
            self.discard_staged(rejected)

        stored: List[TaskSharedProof] = []
        for item in accepted:
            try:
                if not Path(item["path"]).exists():
                    raise ProofStorageError(f"Staged file is missing: {item['path']}")
                key = build_storage_key(
                    dealership_id, task_id, item["original_name"], item["mime"], KIND_SHARED_PROOF
                )
                storage_service.upload_file(item["path"], key, item["mime"])
            except (ProofStorageError, StorageError) as exc:
                logger.error("Shared proof %s for task %s was not stored: %s", item["original_name"], task_id, exc)
                continue
            proof = TaskSharedProof(
                task_id=task_id,
                file_path=key,
                original_filename=item["original_name"],
                mime_type=item["mime"],
                file_size=item["size"],
            )
            db.add(proof)
            stored.append(proof)

        await db.commit()
        self.discard_staged(accepted)
        return stored

    @staticmethod
    def delete_files(keys: Iterable[str]) -> List[str]:
        """Delete stored objects; returns the keys that could not be deleted."""
        failed = []
        for key in keys:
            try:
                storage_service.delete_file(key)
            except StorageError as exc:
                logger.warning("Failed to delete proof object %s: %s", key, exc)
                failed.append(key)
        return failed

    @staticmethod
    def _delete_quietly(keys: Iterable[str]) -> None:
        for key in keys:
            try:
                storage_service.delete_file(key)
            except StorageError as exc:
                logger.warning("Failed to remove partially uploaded object %s: %s", key, exc)

    @staticmethod
    def cleanup_temp_uploads(max_age_hours: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Delete staged uploads older than ``max_age_hours``; returns the number removed."""
        temp_dir = Path(settings.PROOF_TEMP_DIR)
        if not temp_dir.is_dir():
            return 0

        max_age = timedelta(hours=max_age_hours if max_age_hours is not None else settings.TEMP_UPLOAD_TTL_HOURS)
        cutoff = ((now or now_utc()) - max_age).timestamp()
        removed = 0
        for path in temp_dir.iterdir():
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        if removed:
            logger.info("Removed %d stale staged proof uploads", removed)
        return removed


def _queue_deletion(outbox: Outbox, keys: List[str]) -> None:
    from taskhub.tasks.proofs import delete_proof_files

    outbox.enqueue_job(delete_proof_files, keys)


proof_service = ProofService()
