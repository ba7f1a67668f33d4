"""Draft state for the create form: fields, staged attachment, submit."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import structlog

from todo_shared.schemas import Priority, TodoCreate, TodoRead

from .uploads import AttachmentUploader

if TYPE_CHECKING:
    from .sync import TodoSync

log = structlog.get_logger()


@dataclass
class DraftForm:
    task: str = ""
    description: str = ""
    priority: Priority = Priority.MEDIUM
    image_url: Optional[str] = None
    uploading: bool = False

    @property
    def can_submit(self) -> bool:
        return bool(self.task.strip()) and not self.uploading

    async def attach_image(
        self,
        uploader: AttachmentUploader,
        file_name: str,
        data: bytes,
        content_type: str | None = None,
    ) -> str:
        """Upload and stage an image. The form is unchanged if the upload fails."""
        self.uploading = True
        try:
            url = await uploader.upload(file_name, data, content_type)
        finally:
            self.uploading = False
        self.image_url = url
        return url

    def clear_image(self) -> None:
        self.image_url = None

    def to_draft(self) -> TodoCreate:
        return TodoCreate(
            task=self.task,
            description=self.description.strip() or None,
            priority=self.priority,
            image_url=self.image_url,
        )

    async def submit(self, sync: TodoSync) -> list[TodoRead] | None:
        """
        Create the record and reset the form.

        Returns None without touching the network when the task is blank or an
        upload is still running. Mutation errors propagate and keep the draft.
        """
        if not self.can_submit:
            log.debug("draft.submit_refused", uploading=self.uploading)
            return None
        inserted = await sync.create(self.to_draft())
        self.reset()
        return inserted

    def reset(self) -> None:
        self.task = ""
        self.description = ""
        self.priority = Priority.MEDIUM
        self.image_url = None
        self.uploading = False
