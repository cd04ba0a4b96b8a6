from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Collection, Dict, List, Sequence, Tuple

import random
import time

from mixedversion.errors import SpecValidationError
from mixedversion.hooks import Hook
from mixedversion.version import Transition

SEED_CAP = 14  # 19 max

POSSIBLE_DELAYS = tuple(timedelta(milliseconds=ms) for ms in (0, 50, 100, 200, 500))
"""
Delays the executor waits before starting a hook run. Small on purpose:
they shift hooks relative to concurrent restarts, not stall the test.
"""


def generate_seed() -> int:
    return time.time_ns() % pow(10, SEED_CAP)


def _check_probability(name: str, value: float) -> None:
    if not 0 <= value <= 1:
        error = f"{name} probability must be within [0, 1], got {value}"
        hint = "use 0 to disable and 1 to always enable"
        raise SpecValidationError(f"{error}, {hint}")


@dataclass(frozen=True)
class RollbackPolicy:
    """
    Decides whether a transition is first exercised with a rollback excursion:
    upgrade, downgrade back, and only then the upgrade which sticks.

    The first transition never gets one: there is no older cluster state
    worth going back to from the freshly installed cluster.
    """

    probability: float = 0.5
    enabled: bool = True

    def __post_init__(self) -> None:
        _check_probability("rollback", self.probability)


@dataclass(frozen=True)
class HookPolicy:
    """
    Probability that an in-mixed-version hook runs during a round which is
    not the final one. In the final round every hook which has not run yet in
    the transition is always scheduled.
    """

    probability: float = 0.5

    def __post_init__(self) -> None:
        _check_probability("hook", self.probability)


HookSchedule = Dict[int, List[Tuple[Hook, timedelta]]]


class RandomPerturber:
    """
    The only source of randomness used while building a plan.

    The planner calls it from a single thread in a fixed order, so the same
    seed always yields the same sequence of decisions and the same plan.
    """

    seed: int
    rollback: RollbackPolicy
    hooks: HookPolicy

    def __init__(
        self,
        seed: int,
        rollback: RollbackPolicy = RollbackPolicy(),
        hooks: HookPolicy = HookPolicy(),
        rng: random.Random | None = None,
    ) -> None:
        self.seed = seed
        self.rollback = rollback
        self.hooks = hooks
        self.rng = rng if rng is not None else random.Random(seed)

    def __repr__(self) -> str:
        return f"RandomPerturber(seed={self.seed}, rollback={self.rollback}, hooks={self.hooks})"

    def node_order(self, nodes: Sequence[int]) -> List[int]:
        order = list(nodes)
        self.rng.shuffle(order)
        return order

    def inject_rollback(self, transition: Transition) -> bool:
        if transition.is_first or not self.rollback.enabled:
            return False
        return self.rng.random() < self.rollback.probability

    def delay(self) -> timedelta:
        return self.rng.choice(POSSIBLE_DELAYS)

    def schedule_hooks(
        self,
        hooks: Sequence[Hook],
        restarts: int,
        final_round: bool,
        already_ran: Collection[str] = (),
    ) -> HookSchedule:
        """
        Picks which hooks run during a restart round, after which restart
        (1-based position) and with which start delay.
        """
        assert restarts > 0, "a restart round restarts at least one node"

        schedule: HookSchedule = {}
        for hook in hooks:
            must_run = final_round and hook.name not in already_ran
            if not must_run and self.rng.random() >= self.hooks.probability:
                continue

            position = self.rng.randint(1, restarts)
            schedule.setdefault(position, []).append((hook, self.delay()))

        return schedule
