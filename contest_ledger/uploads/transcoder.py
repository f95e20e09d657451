"""Image normalization: decode, downscale, re-encode as WebP."""

import io
from dataclasses import dataclass

from PIL import Image, ImageOps


class TranscodeError(Exception):
    """Raised when an image cannot be decoded or encoded."""


@dataclass(frozen=True)
class TranscodedImage:
    data: bytes
    width: int
    height: int
    content_type: str = "image/webp"


def _has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


class ImageTranscoder:
    """Resize to at most ``max_width`` (never upscaling) and encode as WebP.

    CPU bound; callers run it off the event loop.
    """

    def __init__(self, max_width: int = 1600, quality: int = 82):
        self.max_width = max_width
        self.quality = quality

    def transcode(self, data: bytes) -> TranscodedImage:
        try:
            with Image.open(io.BytesIO(data)) as source:
                image = ImageOps.exif_transpose(source)
                if image.mode not in ("RGB", "RGBA"):
                    image = image.convert("RGBA" if _has_alpha(image) else "RGB")

                if image.width > self.max_width:
                    height = max(1, round(image.height * self.max_width / image.width))
                    image = image.resize(
                        (self.max_width, height), Image.Resampling.LANCZOS
                    )

                output = io.BytesIO()
                image.save(output, format="WEBP", quality=self.quality)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise TranscodeError(f"Could not process image: {e}") from e

        return TranscodedImage(
            data=output.getvalue(),
            width=image.width,
            height=image.height,
        )
