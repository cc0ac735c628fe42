"""Declarative table of the object kinds the storage proxy accepts.

Each upload kind fixes where an object lands (the key prefix the proxy
expands), how it is published, and which ``x-oneblink-request-body``
fields the proxy requires for it.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from oneblink._internal.storage import encode_uri_component
from oneblink._internal.storage.errors import StorageConfigError
from oneblink._internal.storage.types import TransferRequest, Visibility

JSON_CONTENT_TYPE = "application/json"
PDF_CONTENT_TYPE = "application/pdf"


@dataclass(frozen=True)
class UploadKind:
    name: str
    key_template: str
    content_type: str | None = None
    default_visibility: Visibility = "private"
    visibility_configurable: bool = False
    required_fields: tuple[str, ...] = ()
    encoded_fields: tuple[str, ...] = ()
    tag_fields: tuple[str, ...] = ()
    attachment_filename_field: str | None = None

    @property
    def json_body(self) -> bool:
        return self.content_type == JSON_CONTENT_TYPE


@dataclass(frozen=True)
class DownloadKind:
    name: str
    key_template: str


UPLOAD_KINDS: dict[str, UploadKind] = {
    kind.name: kind
    for kind in (
        UploadKind(
            name="submission",
            key_template="forms/{form_id}/submissions",
            content_type=JSON_CONTENT_TYPE,
        ),
        UploadKind(
            name="draft_submission",
            key_template="form-submission-draft-versions",
            content_type=JSON_CONTENT_TYPE,
            required_fields=("formSubmissionDraftId", "createdAt", "title"),
            tag_fields=("formSubmissionDraftId",),
        ),
        UploadKind(
            name="attachment",
            key_template="forms/{form_id}/attachments",
            visibility_configurable=True,
            required_fields=("fileName",),
            encoded_fields=("fileName", "username"),
            attachment_filename_field="fileName",
        ),
        UploadKind(
            name="asset",
            key_template="organisations/{organisation_id}/assets",
            default_visibility="public",
            required_fields=("fileName",),
            encoded_fields=("fileName",),
        ),
        UploadKind(
            name="product_asset",
            key_template="administration/assets",
            default_visibility="public",
            required_fields=("fileName",),
            encoded_fields=("fileName",),
        ),
        UploadKind(
            name="volunteers_asset",
            key_template="volunteers/assets",
            default_visibility="public",
            required_fields=("fileName", "formsAppId"),
            encoded_fields=("fileName",),
        ),
        UploadKind(
            name="prefill",
            key_template="forms/{form_id}/pre-fill",
            content_type=JSON_CONTENT_TYPE,
        ),
        UploadKind(
            name="email_attachment",
            key_template="email-attachments",
            required_fields=("filename",),
            encoded_fields=("filename",),
        ),
        UploadKind(
            name="pdf_conversion",
            key_template="forms/{form_id}/pdf-conversion",
            content_type=PDF_CONTENT_TYPE,
        ),
        UploadKind(
            name="ai_builder_attachment",
            key_template="forms/{form_id}/ai-builder/attachments",
            required_fields=("fileName",),
            encoded_fields=("fileName",),
        ),
    )
}

DOWNLOAD_KINDS: dict[str, DownloadKind] = {
    kind.name: kind
    for kind in (
        DownloadKind("submission", "forms/{form_id}/submissions/{submission_id}"),
        DownloadKind(
            "draft_submission",
            "form-submission-draft-versions/{form_submission_draft_version_id}",
        ),
        DownloadKind("prefill", "forms/{form_id}/pre-fill/{pre_fill_form_data_id}"),
    )
}


def get_upload_kind(name: str) -> UploadKind:
    try:
        return UPLOAD_KINDS[name]
    except KeyError:
        raise StorageConfigError(
            f"Unknown upload kind {name!r}; expected one of {', '.join(UPLOAD_KINDS)}"
        ) from None


def get_download_kind(name: str) -> DownloadKind:
    try:
        return DOWNLOAD_KINDS[name]
    except KeyError:
        raise StorageConfigError(
            f"Unknown download kind {name!r}; expected one of {', '.join(DOWNLOAD_KINDS)}"
        ) from None


def format_key(template: str, path_params: Mapping[str, Any]) -> str:
    try:
        return template.format(**path_params)
    except KeyError as exc:
        raise StorageConfigError(
            f"Missing path parameter {exc.args[0]!r} for {template!r}"
        ) from None


def generate_form_submission_tags(
    *,
    user_token: str | None = None,
    previous_form_submission_approval_id: str | None = None,
    job_id: str | None = None,
) -> list[tuple[str, str]]:
    tags: list[tuple[str, str]] = []
    if user_token:
        tags.append(("userToken", user_token))
    if previous_form_submission_approval_id:
        tags.append(("previousFormSubmissionApprovalId", previous_form_submission_approval_id))
    if job_id:
        tags.append(("jobId", job_id))
    return tags


def _resolve_visibility(kind: UploadKind, visibility: Visibility | None) -> Visibility:
    if visibility is None:
        return kind.default_visibility
    if visibility not in ("public", "private"):
        raise StorageConfigError(f"visibility must be 'public' or 'private', got {visibility!r}")
    if visibility != kind.default_visibility and not kind.visibility_configurable:
        raise StorageConfigError(f"{kind.name} uploads are always {kind.default_visibility}")
    return visibility


def build_transfer_request(
    kind_name: str,
    body: Any,
    *,
    content_type: str | None = None,
    metadata: Mapping[str, Any] | None = None,
    tags: Iterable[tuple[str, str]] | None = None,
    visibility: Visibility | None = None,
    path_params: Mapping[str, Any] | None = None,
) -> TransferRequest:
    """Turn a kind name plus caller arguments into a TransferRequest."""
    kind = get_upload_kind(kind_name)
    fields = dict(metadata or {})

    missing = [name for name in kind.required_fields if fields.get(name) is None]
    if missing:
        raise StorageConfigError(f"{kind.name} uploads require metadata: {', '.join(missing)}")

    if kind.content_type is not None:
        if content_type is not None and content_type != kind.content_type:
            raise StorageConfigError(f"{kind.name} uploads are always {kind.content_type}")
        content_type = kind.content_type
    elif not content_type:
        raise StorageConfigError(f"{kind.name} uploads require a content_type")

    tag_list = list(tags or ())
    tag_list.extend((name, str(fields[name])) for name in kind.tag_fields)

    content_disposition = None
    if kind.attachment_filename_field is not None:
        filename = encode_uri_component(str(fields[kind.attachment_filename_field]))
        content_disposition = f"attachment; filename*=UTF-8''{filename}"

    for name in kind.encoded_fields:
        if fields.get(name) is not None:
            fields[name] = encode_uri_component(str(fields[name]))

    if kind.json_body and isinstance(body, (dict, list)):
        body = json.dumps(body)

    return TransferRequest(
        key=format_key(kind.key_template, path_params or {}),
        body=body,
        content_type=content_type,
        request_body_header=fields or None,
        tags=tuple(tag_list),
        visibility=_resolve_visibility(kind, visibility),
        content_disposition=content_disposition,
    )


__all__ = [
    "UploadKind",
    "DownloadKind",
    "UPLOAD_KINDS",
    "DOWNLOAD_KINDS",
    "get_upload_kind",
    "get_download_kind",
    "format_key",
    "generate_form_submission_tags",
    "build_transfer_request",
]
