"""Exception hierarchy for the validator engine.

Two tiers are kept apart:

- ValidatorSpecError: a validator spec (or docker expectation) is malformed.
  Raised at construction time, before anything runs.
- ValidatorError: infrastructure failure while a validator runs (cannot
  connect, cannot spawn, unparseable response, timeout, unregistered image).
  Raised out of validate(); the runner records it as a failed test.

A check that ran fine but whose condition did not hold is neither: it is a
failed TestCase.
"""

from typing import List, Sequence


class ValidatorSpecError(ValueError):
    """Validator spec string could not be parsed or constructed."""
    pass


class ValidatorError(Exception):
    """Base exception for failures while running a validator."""
    pass


class HttpError(ValidatorError):
    """Could not complete a raw HTTP exchange with the server under test."""
    pass


class ScenarioStepError(ValidatorError):
    """A step of a multi-request scenario failed at the transport level."""

    def __init__(self, step: int, label: str, reason: str):
        self.step = step
        self.label = label
        self.reason = reason
        super().__init__(f"step {step} ({label}): {reason}")


class ProcessError(ValidatorError):
    """A subprocess could not be spawned or waited on."""
    pass


class ProcessTimeoutError(ProcessError):
    """A subprocess exceeded its time limit and was killed."""

    def __init__(self, args: Sequence[str], timeout: float):
        self.args_list = list(args)
        self.timeout = timeout
        super().__init__(f"'{' '.join(args)}' timed out after {timeout:g}s")


class SandboxError(ValidatorError):
    """Base exception for docker sandbox errors."""
    pass


class UnregisteredImageError(SandboxError):
    """Image key is not in the compiled-in registry."""

    def __init__(self, key: str, valid_keys: List[str]):
        self.key = key
        self.valid_keys = valid_keys
        super().__init__(
            f"docker image '{key}' is not registered. valid images: {', '.join(valid_keys)}"
        )


class SandboxTimeoutError(SandboxError):
    """Container exceeded its time limit."""
    pass
