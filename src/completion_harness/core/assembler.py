"""Conversion of stored messages into chat-completion message params."""

from __future__ import annotations

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Any, Protocol

from completion_harness.errors import AttachmentReadError
from completion_harness.llm.models import (
    NOT_SUPPORT_ARRAY_CONTENT_PROVIDERS,
    is_vision_model,
)
from completion_harness.types import Attachment, ConversationMessage, FileType, Model

_logger = logging.getLogger(__name__)

FILE_DIVIDER = "\n\n---\n\n"


class AttachmentReader(Protocol):
    """Reads attachment bodies from wherever the application stores them."""

    async def read_text(self, attachment: Attachment) -> str:
        ...

    async def read_image_data_url(self, attachment: Attachment) -> str:
        ...


class LocalAttachmentReader:
    """Reads attachments stored as ``<root>/<id><ext>``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()

    def _path(self, attachment: Attachment) -> Path:
        return self._root / attachment.storage_name

    async def read_text(self, attachment: Attachment) -> str:
        path = self._path(attachment)
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise AttachmentReadError(f"Cannot read {attachment.origin_name}: {e}") from e

    async def read_image_data_url(self, attachment: Attachment) -> str:
        path = self._path(attachment)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise AttachmentReadError(f"Cannot read {attachment.origin_name}: {e}") from e
        mime = mimetypes.guess_type(path.name)[0] or "image/png"
        return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


class MessageAssembler:
    """Builds ``{"role", "content"}`` payloads, inlining attachments.

    Providers that reject array content get text attachments appended to
    the message text; everything else gets ordered content parts.
    """

    def __init__(
        self,
        reader: AttachmentReader,
        provider_id: str = "",
        not_support_array_content: bool = False,
    ) -> None:
        self._reader = reader
        self._provider_id = provider_id
        self._not_support_array_content = not_support_array_content

    @property
    def supports_structured_content(self) -> bool:
        if self._not_support_array_content:
            return False
        return self._provider_id not in NOT_SUPPORT_ARRAY_CONTENT_PROVIDERS

    async def extract_file_content(self, message: ConversationMessage) -> str:
        """Text attachments as ``file: <name>`` sections, divider-terminated."""
        text = ""
        for attachment in message.attachments:
            if not attachment.is_textual:
                continue
            body = (await self._reader.read_text(attachment)).strip()
            text += f"file: {attachment.origin_name}\n\n{body}{FILE_DIVIDER}"
        return text

    async def assemble(self, message: ConversationMessage, model: Model) -> dict[str, Any]:
        if not message.attachments:
            content: Any = message.content
            if not isinstance(content, str):
                content = list(content)
            return {"role": message.role, "content": content}

        text = message.text

        if not self.supports_structured_content:
            file_content = await self.extract_file_content(message)
            if file_content:
                text = text + FILE_DIVIDER + file_content
            return {"role": message.role, "content": text}

        vision = is_vision_model(model)
        parts: list[dict[str, Any]] = []
        if text:
            parts.append({"type": "text", "text": text})

        for attachment in message.attachments:
            if attachment.type == FileType.IMAGE and vision:
                url = await self._reader.read_image_data_url(attachment)
                parts.append({"type": "image_url", "image_url": {"url": url}})
            elif attachment.is_textual:
                body = (await self._reader.read_text(attachment)).strip()
                parts.append({"type": "text", "text": f"{attachment.origin_name}\n{body}"})
            else:
                _logger.debug(
                    "Skipping attachment %s (%s) for model %s",
                    attachment.origin_name, attachment.type.value, model.id,
                )

        return {"role": message.role, "content": parts}
