from __future__ import annotations

from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID

from fastapi import Request as FastapiRequest
from pydantic import BaseModel, ValidationError as PydanticValidationError
from starlette.datastructures import UploadFile as StarletteUploadFile

from portal.core.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)

FILES_FIELD = "files"


@dataclass(frozen=True)
class IncomingFile:
    file_name: str
    mime_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def uuid_or_400(raw: object, field_name: str) -> UUID:
    try:
        return UUID(str(raw))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f'Invalid "{field_name}"') from exc


def optional_uuid_or_400(raw: object, field_name: str) -> UUID | None:
    if raw is None or not str(raw).strip():
        return None
    return uuid_or_400(raw, field_name)


def model_or_400(model: type[ModelT], data: dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
        message = str(first.get("msg") or "Invalid request data")
        raise ValidationError(f"{field}: {message}" if field else message) from exc


async def read_request_payload(http_request: FastapiRequest) -> tuple[dict[str, Any], list[IncomingFile]]:
    """Collect scalar fields and uploaded files from a multipart form or a JSON body.

    Only keys present in the body end up in the dict; an empty form value means null.
    """
    content_type = str(http_request.headers.get("content-type") or "").lower()
    if content_type.startswith("application/json"):
        try:
            body = await http_request.json()
        except ValueError as exc:
            raise ValidationError("Malformed JSON body") from exc
        if not isinstance(body, dict):
            raise ValidationError("JSON body must be an object")
        return body, []

    form = await http_request.form()
    fields: dict[str, Any] = {}
    files: list[IncomingFile] = []
    for key, value in form.multi_items():
        if isinstance(value, StarletteUploadFile):
            if not value.filename:
                continue
            files.append(
                IncomingFile(
                    file_name=str(value.filename),
                    mime_type=str(value.content_type or "application/octet-stream"),
                    content=await value.read(),
                )
            )
            continue
        text = str(value)
        fields[key] = text if text.strip() else None
    return fields, files
