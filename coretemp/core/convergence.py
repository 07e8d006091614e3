"""Count-based convergence detection for HRM discovery polling."""

from __future__ import annotations

_UNSET = -1
_STABLE_CYCLES = 2


class ConvergenceTracker:
    """Declares convergence once the reported total stops changing.

    Only the count is compared; the individual HRM addresses are not checked.
    """

    def __init__(self) -> None:
        self.last_count = _UNSET
        self.unchanged_cycles = 0
        self.converged = False

    def reset(self) -> None:
        self.last_count = _UNSET
        self.unchanged_cycles = 0
        self.converged = False

    def observe(self, count: int) -> bool:
        if self.converged:
            return True
        if count == self.last_count:
            self.unchanged_cycles += 1
            if self.unchanged_cycles >= _STABLE_CYCLES:
                self.converged = True
        else:
            self.last_count = count
            self.unchanged_cycles = 0
        return self.converged
