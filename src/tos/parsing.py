"""Status checks and body decoding for TOS responses."""

from __future__ import annotations

import logging
from typing import Sequence, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .consts import HEADER_EC, HEADER_HASH_CRC64ECMA, HEADER_RETRY_AFTER, MAX_ERROR_BODY
from .errors import ChecksumError, SerializeError, TosServerError, UnexpectedStatusCodeError
from .request import Response
from .retry import parse_retry_after

__all__ = ["ErrorBody", "check_error", "parse_json_output", "check_crc64"]

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ErrorBody(BaseModel):
    code: str = Field(default="", alias="Code")
    message: str = Field(default="", alias="Message")
    request_id: str = Field(default="", alias="RequestId")
    host_id: str = Field(default="", alias="HostId")
    resource: str = Field(default="", alias="Resource")
    ec: str = Field(default="", alias="EC")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def check_error(response: Response, expected_codes: Sequence[int], *, method: str = "") -> None:
    """Raise unless ``response.status_code`` is one of ``expected_codes``.

    Error statuses (>= 400) raise :class:`TosServerError`.  Its fields come
    from the JSON body (at most 64 KiB is read; ``HEAD`` bodies are never
    read), and an empty or unparseable body yields a generic message.
    Other mismatches raise :class:`UnexpectedStatusCodeError`.  The body is
    closed either way.
    """
    if response.status_code in expected_codes:
        return
    retry_after = parse_retry_after(response.headers.get(HEADER_RETRY_AFTER))
    try:
        if response.status_code < 400:
            raise UnexpectedStatusCodeError(
                response.status_code,
                expected_codes,
                request_id=response.request_id,
                request_url=response.request_url,
                retry_after=retry_after,
            )
        body = ErrorBody(message="tos: server returned an empty body")
        data = b""
        if method.upper() != "HEAD" and response.body is not None:
            data = response.read_all(MAX_ERROR_BODY).strip()
        if data:
            try:
                body = ErrorBody.model_validate_json(data)
            except ValidationError:
                logger.debug(
                    "error body is not json",
                    extra={"status_code": response.status_code, "request_id": response.request_id},
                )
                body = ErrorBody(message="tos: server returned an invalid body")
        raise TosServerError(
            body.message,
            status_code=response.status_code,
            code=body.code,
            request_id=body.request_id or response.request_id,
            host_id=body.host_id,
            resource=body.resource,
            ec=body.ec or response.headers.get(HEADER_EC, ""),
            request_url=response.request_url,
            headers=dict(response.headers),
            retry_after=retry_after,
        )
    finally:
        response.close()


def parse_json_output(response: Response, model: Type[M]) -> M:
    """Decode the JSON body of ``response`` into ``model`` and close the body."""
    try:
        data = response.read_all().strip()
    finally:
        response.close()
    if not data:
        raise SerializeError(
            "tos: server returned an empty body",
            status_code=response.status_code,
            request_id=response.request_id,
            request_url=response.request_url,
        )
    try:
        return model.model_validate_json(data)
    except ValidationError as exc:
        raise SerializeError(
            f"tos: unmarshal response body failed: {exc.error_count()} error(s)",
            status_code=response.status_code,
            request_id=response.request_id,
            request_url=response.request_url,
        ) from exc


def check_crc64(response: Response, local_crc: int) -> None:
    """Compare ``local_crc`` with the server's ``X-Tos-Hash-Crc64ecma`` header.

    A missing header skips the check.
    """
    value = response.headers.get(HEADER_HASH_CRC64ECMA, "")
    if not value:
        return
    try:
        server_crc = int(value)
    except ValueError:
        raise TosServerError(
            "tos: server returned invalid crc",
            status_code=response.status_code,
            request_id=response.request_id,
            request_url=response.request_url,
        ) from None
    if server_crc != local_crc:
        raise ChecksumError(
            "tos: crc64 check failed",
            expected=server_crc,
            actual=local_crc,
            request_id=response.request_id,
            request_url=response.request_url,
        )
