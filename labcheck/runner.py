"""Runs a task's validator list into one TestResults."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .config import OUTCOME_CONTEXT_LIMIT
from .context import ValidationContext
from .errors import ValidatorError, ValidatorSpecError
from .results import TestCase, TestResults
from .shell import CommandResult, run_commands, run_commands_best_effort
from .validators.base import truncate
from .validators.factory import create_validator

logger = logging.getLogger(__name__)


# ============ Validators ============

async def run_validator(spec: str, context: ValidationContext) -> TestCase:
    """
    Build and run one validator.

    Never raises for spec or infrastructure problems: a malformed spec
    and a ValidatorError out of validate() both come back as failed cases.
    """
    try:
        validator = create_validator(spec, context)
    except ValidatorSpecError as e:
        logger.warning("invalid validator '%s': %s", spec, e)
        return TestCase.fail(spec, f"invalid validator '{spec}': {e}")

    try:
        return await validator.validate()
    except ValidatorError as e:
        logger.debug("%s raised %s", validator.kind, e)
        message = truncate(str(e))
        return TestCase.fail(message, message)


async def run_validators(
    specs: Sequence[str],
    context: Optional[ValidationContext] = None,
    stop_on_failure: bool = False,
) -> TestResults:
    """
    Run validators in order.

    Args:
        specs: Validator spec strings attached to the task
        context: Workspace, runtime hint and target ports
        stop_on_failure: Skip the remaining validators after the first failure

    Returns:
        TestResults with one case per validator that ran
    """
    context = context or ValidationContext()
    results = TestResults()

    for spec in specs:
        case = await run_validator(spec, context)
        results.add(case)
        if stop_on_failure and not case.passed:
            logger.debug("stopping after failed validator '%s'", spec)
            break

    return results


# ============ Tasks ============

@dataclass
class TaskRun:
    """Everything a task run produced, for the reporting layer."""
    results: TestResults = field(default_factory=TestResults)
    setup_failure: Optional[Tuple[str, CommandResult]] = None
    cleanup_failures: List[Tuple[str, CommandResult]] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.setup_failure is None and self.results.total > 0 and self.results.all_passed()

    @property
    def outcome(self) -> str:
        return "passed" if self.passed else "failed"


async def run_task(
    specs: Sequence[str],
    context: Optional[ValidationContext] = None,
    prologue: Sequence[str] = (),
    epilogue: Sequence[str] = (),
    stop_on_failure: bool = False,
) -> TaskRun:
    """
    Run a task: setup commands, validators, then cleanup commands.

    A failing prologue command skips the validators. The epilogue always
    runs, best-effort, even when setup or a validator failed.
    """
    run = TaskRun()
    try:
        if prologue:
            logger.info("running %d setup commands", len(prologue))
            failure = await run_commands(prologue)
            if failure is not None:
                logger.error("setup command failed: %s", failure[0])
                run.setup_failure = failure
                return run

        run.results = await run_validators(specs, context, stop_on_failure)
        return run
    finally:
        if epilogue:
            logger.info("running %d cleanup commands", len(epilogue))
            run.cleanup_failures = await run_commands_best_effort(epilogue)


def outcome_context(results: TestResults, limit: int = OUTCOME_CONTEXT_LIMIT) -> str:
    """One "#i [PASS|FAIL] name: message" line per case, bounded in size."""
    lines = []
    for i, case in enumerate(results, start=1):
        status = "PASS" if case.passed else "FAIL"
        lines.append(f"#{i} [{status}] {case.name}: {case.message}")
    context = "\n".join(lines)
    if len(context) > limit:
        return context[:limit] + "...[truncated]"
    return context
