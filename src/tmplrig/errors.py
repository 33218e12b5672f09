"""Exception types raised by the template test harness."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .process import ProcessRun


class HarnessError(Exception):
    """Base class for harness errors."""


class SetupError(HarnessError):
    """The environment is not in a state the test run can start from.

    Raised for stale template registrations, a wrong number of built
    template packages, or an unusable process tracking directory.
    """


class ProcessFailedError(HarnessError, AssertionError):
    """An external tool exited with a nonzero code where success was asserted."""

    def __init__(self, process: "ProcessRun", message: Optional[str] = None):
        self.process = process
        self.exit_code = process.exit_code
        detail = process.formatted_output()
        if message:
            detail = f"{message}\n{detail}"
        super().__init__(detail)


class ReadinessTimeout(HarnessError, TimeoutError):
    """A launched server never started answering within its allowed attempts."""


class CleanupError(HarnessError):
    """One or more generated projects could not be disposed."""

    def __init__(self, errors: list[BaseException]):
        self.errors = list(errors)
        lines = "\n".join(f"  - {type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{len(self.errors)} error(s) while disposing projects:\n{lines}")
