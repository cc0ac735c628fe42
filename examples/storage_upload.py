"""
Example: upload a form submission and an attachment, then read the submission back.

Needs a OneBlink API origin and an access token:

    ONEBLINK_API_ORIGIN=https://bucket.api.example.com
    ONEBLINK_ACCESS_TOKEN=...
"""

import asyncio
import logging
import os

from oneblink.storage import (
    AsyncStorageClient,
    ProgressEvent,
    StorageClient,
    generate_form_submission_tags,
)

logging.basicConfig(level=logging.DEBUG)

token = os.getenv("ONEBLINK_ACCESS_TOKEN")
assert token, "Set ONEBLINK_ACCESS_TOKEN"
assert os.getenv("ONEBLINK_API_ORIGIN"), "Set ONEBLINK_API_ORIGIN"

FORM_ID = int(os.getenv("ONEBLINK_FORM_ID", "1"))


def print_progress(event: ProgressEvent) -> None:
    print(f"  {event.progress}%")


def sync_example():
    print("=== Sync Storage Example ===\n")

    with StorageClient(token_provider=lambda: token) as storage:
        result = storage.upload(
            "submission",
            {"submission": {"name": "Example"}},
            metadata={"formsAppId": 1, "externalId": None},
            tags=generate_form_submission_tags(job_id=os.getenv("ONEBLINK_JOB_ID")),
            on_progress=print_progress,
            form_id=FORM_ID,
        )
        print(f"Submission ID: {result['submissionId']}")
        print(f"Key: {result.s3.key}\n")

        data = storage.download(
            "submission", form_id=FORM_ID, submission_id=result["submissionId"]
        )
        print(f"Downloaded: {data}\n")


async def async_example():
    print("=== Async Storage Example ===\n")

    async def token_provider() -> str:
        return token

    # 12 MiB goes up in three parts
    payload = b"A" * (12 * 1024 * 1024)

    async with AsyncStorageClient(token_provider=token_provider) as storage:
        result = await storage.upload(
            "attachment",
            payload,
            content_type="application/octet-stream",
            metadata={"fileName": "large file.bin", "isPrivate": True},
            on_progress=print_progress,
            form_id=FORM_ID,
        )
        print(f"Attachment ID: {result.get('id')}")
        print(f"Key: {result.s3.key}")


if __name__ == "__main__":
    sync_example()
    asyncio.run(async_example())
