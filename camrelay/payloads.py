"""
Frame upload decoding.

Devices post frames in one of three shapes:

- multipart form data with the image as a file field (``frame``),
- the raw image as the request body,
- JSON ``{"type": "Buffer", "data": [255, 216, ...]}`` as produced by
  serializing a Node.js Buffer.

Whatever the shape, the result handed to the frame store is plain ``bytes``.
"""

from typing import List, Literal

from fastapi import Request
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.datastructures import FormData, UploadFile
from starlette.types import Message

from camrelay.errors import PayloadTooLarge, ValidationError

FRAME_FIELD = "frame"


class BufferPayload(BaseModel):
    type: Literal["Buffer"]
    data: List[int] = Field(default_factory=list)


def _check_declared_length(request: Request, max_request_bytes: int) -> None:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_request_bytes:
        raise PayloadTooLarge(
            f"Request body of {declared} bytes exceeds the "
            f"{max_request_bytes} byte limit"
        )


async def _read_body(request: Request, max_request_bytes: int) -> bytes:
    chunks = []
    received = 0
    async for chunk in request.stream():
        received += len(chunk)
        if received > max_request_bytes:
            raise PayloadTooLarge(
                f"Request body exceeds the {max_request_bytes} byte limit"
            )
        chunks.append(chunk)
    return b"".join(chunks)


def _replay(request: Request, body: bytes) -> Request:
    """A copy of ``request`` whose body is the already counted ``body``."""

    async def receive() -> Message:
        return {"type": "http.request", "body": body, "more_body": False}

    return Request(request.scope, receive)


async def _file_from_form(form: FormData) -> bytes:
    upload = form.get(FRAME_FIELD)
    if not isinstance(upload, UploadFile):
        # Accept the first file field whatever its name
        upload = next(
            (value for _, value in form.multi_items() if isinstance(value, UploadFile)),
            None,
        )
    if upload is None:
        return b""
    return await upload.read()


def decode_buffer_json(body: bytes) -> bytes:
    """Decode a JSON-serialized byte array into bytes."""
    if not body.strip():
        return b""
    try:
        wrapper = BufferPayload.model_validate_json(body)
        return bytes(wrapper.data)
    except PydanticValidationError as e:
        raise ValidationError("Unsupported JSON frame encoding") from e
    except ValueError as e:
        # bytes() rejects values outside 0..255
        raise ValidationError(f"Invalid byte array: {e}") from e


async def read_frame_payload(request: Request, max_request_bytes: int) -> bytes:
    """Extract the frame bytes from an upload request."""
    _check_declared_length(request, max_request_bytes)
    content_type = request.headers.get("content-type", "").lower()

    body = await _read_body(request, max_request_bytes)

    if content_type.startswith("multipart/form-data"):
        async with _replay(request, body).form() as form:
            return await _file_from_form(form)

    if content_type.startswith("application/json"):
        return decode_buffer_json(body)

    return body
