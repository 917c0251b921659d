"""Best-effort image pre-fetch through the Docker SDK.

Pulling with the SDK rather than the compose tool keeps credential-helper
authentication working when compose itself runs inside a container.
"""

from __future__ import annotations

import logging
from typing import Any

from docker.errors import DockerException, ImageNotFound

logger = logging.getLogger(__name__)


def split_image_name(image: str) -> tuple[str, str | None]:
    """Split ``repo[:tag][@digest]`` into the arguments ``images.pull`` takes."""
    if "@" in image:
        repository, digest = image.split("@", 1)
        return repository, digest
    last_segment = image.rsplit("/", 1)[-1]
    if ":" in last_segment:
        repository, tag = image.rsplit(":", 1)
        return repository, tag
    return image, "latest"


class ImagePuller:
    """Ensures images are present locally, logging rather than raising."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def ensure(self, image: str) -> bool:
        """Return True if *image* is available after the call."""
        try:
            self.client.images.get(image)
            return True
        except ImageNotFound:
            pass
        except DockerException as exc:
            logger.warning("Unable to inspect local image %s: %s", image, exc)
        logger.info(
            "Preemptively pulling %s, referenced via a compose file or transitive Dockerfile",
            image,
        )
        repository, tag = split_image_name(image)
        try:
            self.client.images.pull(repository, tag=tag)
            return True
        except DockerException as exc:
            logger.warning(
                "Unable to pre-fetch image %s; startup will continue but may fail: %s",
                image, exc,
            )
            return False

    def pull_all(self, images: list[str]) -> dict[str, bool]:
        return {image: self.ensure(image) for image in images}
