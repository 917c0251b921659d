"""Compose file sets and the images they depend on.

Only the fields needed to find images are read: ``services.*.image`` and,
for services built from source, the ``FROM`` lines of their Dockerfile.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from src.shared.constants import PROJECT_ID_PREFIX, PROJECT_ID_RANDOM_LENGTH
from src.shared.errors import ConfigurationError

logger = logging.getLogger(__name__)

_FROM_LINE = re.compile(r"^\s*FROM\s+(?:--platform=\S+\s+)?(\S+)(?:\s+AS\s+(\S+))?", re.IGNORECASE)


def random_project_id(prefix: str = PROJECT_ID_PREFIX) -> str:
    """Return a fresh lowercase project identifier."""
    return f"{prefix}{uuid.uuid4().hex[:PROJECT_ID_RANDOM_LENGTH]}"


@dataclass(frozen=True)
class ComposeFileSet:
    """Ordered compose files plus the project they are started as."""
    files: tuple[Path, ...]
    project: str = field(default_factory=random_project_id)
    services: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.files:
            raise ConfigurationError("No docker compose file have been provided")
        object.__setattr__(self, "files", tuple(Path(f) for f in self.files))
        object.__setattr__(self, "project", self.project.lower())

    @property
    def working_dir(self) -> Path:
        """Directory of the first file; relative paths resolve against it."""
        return self.files[0].resolve().parent

    def load(self) -> list[dict[str, Any]]:
        """Parse every file; unreadable files are reported as configuration errors."""
        documents = []
        for path in self.files:
            try:
                with open(path, "r", encoding="utf-8") as f:
                    documents.append(yaml.safe_load(f) or {})
            except (OSError, yaml.YAMLError) as exc:
                raise ConfigurationError(f"Cannot read compose file {path}: {exc}") from exc
        return documents

    def service_names(self) -> list[str]:
        """Services declared across all files, first definition order."""
        names: dict[str, None] = {}
        for doc in self.load():
            for name in (doc.get("services") or {}):
                names.setdefault(name, None)
        return list(names)

    def dependency_images(self) -> list[str]:
        """Images referenced directly or through a build Dockerfile, in file order."""
        images: dict[str, None] = {}
        for path, doc in zip(self.files, self.load()):
            for service in (doc.get("services") or {}).values():
                if not isinstance(service, dict):
                    continue
                if service.get("image"):
                    images.setdefault(str(service["image"]), None)
                if service.get("build"):
                    dockerfile = _dockerfile_path(path.resolve().parent, service["build"])
                    for image in dockerfile_images(dockerfile):
                        images.setdefault(image, None)
        return list(images)


def _dockerfile_path(base: Path, build: str | dict[str, Any]) -> Path:
    if isinstance(build, str):
        return base / build / "Dockerfile"
    context = base / str(build.get("context", "."))
    return context / str(build.get("dockerfile", "Dockerfile"))


def dockerfile_images(dockerfile: Path) -> list[str]:
    """Base images of a Dockerfile, skipping ``scratch`` and earlier stages."""
    try:
        text = dockerfile.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Dockerfile %s not readable, no base images collected", dockerfile)
        return []
    stages: set[str] = set()
    images: list[str] = []
    for line in text.splitlines():
        match = _FROM_LINE.match(line)
        if not match:
            continue
        image, alias = match.group(1), match.group(2)
        if image.lower() != "scratch" and image not in stages and "$" not in image:
            images.append(image)
        if alias:
            stages.add(alias)
    return images
