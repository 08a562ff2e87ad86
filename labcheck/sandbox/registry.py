"""
Registered container images.

SECURITY MODEL:
This table is the only authority on which images may be built or pulled.
It is compiled in and read-only: it is never populated from configuration,
task data or a network response. Adding an image is a code change.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..errors import UnregisteredImageError


class SourceKind(Enum):
    LOCAL = "local"    # Dockerfile fetched from the trusted repository, built here
    REMOTE = "remote"  # fully-qualified image reference, pulled as-is


@dataclass(frozen=True)
class ImageSource:
    kind: SourceKind
    path: str

    @property
    def is_remote(self) -> bool:
        return self.kind is SourceKind.REMOTE


@dataclass(frozen=True)
class RegisteredImage:
    """An image pre-approved for sandboxed execution."""
    key: str
    description: str
    source: ImageSource

    def __str__(self) -> str:
        return self.key


REGISTERED_IMAGES = (
    RegisteredImage(
        key="go1.22",
        description="Go 1.22 build and test environment",
        source=ImageSource(SourceKind.LOCAL, "docker/Go1.22"),
    ),
    RegisteredImage(
        key="go1.22-race",
        description="Go 1.22 with race detector enabled",
        source=ImageSource(SourceKind.LOCAL, "docker/Go1.22-race"),
    ),
    RegisteredImage(
        key="api-client-test",
        description="Test server for API client validation",
        source=ImageSource(SourceKind.REMOTE, "ghcr.io/projectlighthouse/api-client-test:latest"),
    ),
)


def lookup(key: str) -> Optional[RegisteredImage]:
    """Case-insensitive lookup by key."""
    key = key.strip().lower()
    for image in REGISTERED_IMAGES:
        if image.key == key:
            return image
    return None


def is_registered(key: str) -> bool:
    return lookup(key) is not None


def list_keys() -> List[str]:
    return [image.key for image in REGISTERED_IMAGES]


def require(key: str) -> RegisteredImage:
    """
    Look up a key or refuse it.

    Raises:
        UnregisteredImageError: key is not in the table; the message lists
            every valid key
    """
    image = lookup(key)
    if image is None:
        raise UnregisteredImageError(key, list_keys())
    return image
