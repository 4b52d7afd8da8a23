"""Fan-out image generation across every configured image backend."""

import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from chatloop.errors import StorageError
from chatloop.ids import new_uuid
from chatloop.providers.base import ImageProvider
from chatloop.storage.blob import BlobStore
from chatloop.tools.branches import Branch, BranchOutcome, ConcurrentBranchRunner, format_elapsed

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}


class GenerateImageArgs(BaseModel):
    prompt: str = Field(min_length=1, description="The prompt to generate the image from")


@dataclass(frozen=True, slots=True)
class ImageArtifact:
    url: str
    generate_seconds: float
    upload_seconds: float


class ImageUploadError(StorageError):
    """An image was generated but could not be stored."""

    def __init__(self, message: str, *, generate_seconds: float, retryable: bool = True) -> None:
        super().__init__(message, retryable=retryable)
        self.generate_seconds = generate_seconds


def _image_branch(
    label: str,
    model_id: str,
    prompt: str,
    *,
    images: ImageProvider,
    blobs: BlobStore,
    size: str,
) -> Branch:
    async def operation() -> ImageArtifact:
        started = time.perf_counter()
        image = await images.generate(model_id, prompt, size)
        generated = time.perf_counter()
        extension = _EXTENSIONS.get(image.media_type, "bin")
        try:
            url = await blobs.put(
                f"images/{new_uuid()}.{extension}", image.data, image.media_type
            )
        except Exception as exc:
            logger.warning(
                "image.upload_failed label=%s generate=%s error=%s: %s",
                label,
                format_elapsed(generated - started),
                type(exc).__name__,
                exc,
            )
            raise ImageUploadError(
                str(exc) or type(exc).__name__,
                generate_seconds=generated - started,
                retryable=getattr(exc, "retryable", True),
            ) from exc
        return ImageArtifact(
            url=url,
            generate_seconds=generated - started,
            upload_seconds=time.perf_counter() - generated,
        )

    return Branch(branch_id=label, operation=operation)


def outcome_entry(outcome: BranchOutcome, prompt: str) -> dict[str, Any]:
    """One element of the tool result, labelled by the branch that produced it."""
    entry: dict[str, Any] = {
        "model": outcome.branch_id,
        "status": outcome.status,
        "prompt": prompt,
        "time": outcome.elapsed,
    }
    if outcome.ok and isinstance(outcome.payload, ImageArtifact):
        entry["url"] = outcome.payload.url
        entry["timings"] = {
            "generate": format_elapsed(outcome.payload.generate_seconds),
            "upload": format_elapsed(outcome.payload.upload_seconds),
        }
    else:
        entry["error"] = outcome.error or "image generation failed"
        if isinstance(outcome.exception, ImageUploadError):
            entry["timings"] = {"generate": format_elapsed(outcome.exception.generate_seconds)}
    return entry


def make_generate_image_handler(
    *,
    images: ImageProvider,
    blobs: BlobStore,
    backends: Sequence[tuple[str, str]],
    size: str = "1024x1024",
    runner: ConcurrentBranchRunner | None = None,
) -> Callable[[GenerateImageArgs], Awaitable[list[dict[str, Any]]]]:
    branch_runner = runner or ConcurrentBranchRunner()

    async def generate_image(args: GenerateImageArgs) -> list[dict[str, Any]]:
        branches = [
            _image_branch(label, model_id, args.prompt, images=images, blobs=blobs, size=size)
            for label, model_id in backends
        ]
        outcomes = await branch_runner.run_all(branches)
        logger.info(
            "image.fanout prompt_chars=%d ok=%d failed=%d",
            len(args.prompt),
            sum(1 for item in outcomes if item.ok),
            sum(1 for item in outcomes if not item.ok),
        )
        return [outcome_entry(outcome, args.prompt) for outcome in outcomes]

    return generate_image
