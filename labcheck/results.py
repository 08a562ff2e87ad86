"""Result vocabulary shared by every validator."""

from dataclasses import dataclass, field
from typing import Iterator, List


@dataclass
class TestCase:
    """Outcome of a single check.

    A failed TestCase means the check ran and the condition did not hold.
    Infrastructure failures (could not connect, could not spawn) are raised
    as ValidatorError instead and only become TestCases in the runner.
    """
    __test__ = False  # not a pytest class

    name: str
    passed: bool
    message: str

    @classmethod
    def ok(cls, name: str, message: str) -> "TestCase":
        return cls(name=name, passed=True, message=message)

    @classmethod
    def fail(cls, name: str, message: str) -> "TestCase":
        return cls(name=name, passed=False, message=message)


@dataclass
class TestResults:
    """Ordered, append-only collection of TestCases for one task run."""
    __test__ = False

    tests: List[TestCase] = field(default_factory=list)

    def add(self, test: TestCase) -> None:
        self.tests.append(test)

    @property
    def passed(self) -> int:
        return sum(1 for t in self.tests if t.passed)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tests if not t.passed)

    @property
    def total(self) -> int:
        return len(self.tests)

    def all_passed(self) -> bool:
        return all(t.passed for t in self.tests)

    def __iter__(self) -> Iterator[TestCase]:
        return iter(self.tests)

    def __len__(self) -> int:
        return len(self.tests)
