"""Sandbox module for running registered container images."""

from .executor import DockerExecutor, ExecutorResult
from .registry import REGISTERED_IMAGES, RegisteredImage, is_registered, list_keys, lookup
from .validator import DockerValidator, Expectation, ExpectationKind

__all__ = [
    "DockerExecutor",
    "ExecutorResult",
    "REGISTERED_IMAGES",
    "RegisteredImage",
    "is_registered",
    "list_keys",
    "lookup",
    "DockerValidator",
    "Expectation",
    "ExpectationKind",
]
