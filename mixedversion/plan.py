from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Tuple, Type, TypeVar

from mixedversion.config import DeploymentMode
from mixedversion.stage import Track
from mixedversion.steps import ConcurrencyGroup, RestartNode, RunHook, Step, flatten
from mixedversion.version import Transition, Version

S = TypeVar("S", bound=Step)


@dataclass(frozen=True)
class Plan:
    """
    The outcome of a planner run: an ordered forest of steps. Top level
    steps run one after another, `ConcurrencyGroup` children may run
    together.

    A plan is a value, built once and only read afterwards.
    """

    seed: int
    deployment_mode: DeploymentMode
    transitions: Tuple[Transition, ...]
    nodes: Tuple[int, ...]
    steps: Tuple[Step, ...]

    def __len__(self) -> int:
        return sum(1 for _ in flatten(self.steps))

    @property
    def path(self) -> List[Version]:
        return [self.transitions[0].from_version] + [t.to_version for t in self.transitions]

    def steps_in_order(self) -> List[Step]:
        """
        Leaf steps in the order of their sequence numbers;
        `plan.steps_in_order()[n - 1]` is the step rendered with `(n)`.
        """
        return list(flatten(self.steps))

    def of_type(self, kind: Type[S]) -> List[S]:
        return [step for step in flatten(self.steps) if isinstance(step, kind)]

    def groups(self) -> Iterator[ConcurrencyGroup]:
        def walk(steps: Tuple[Step, ...]) -> Iterator[ConcurrencyGroup]:
            for step in steps:
                if isinstance(step, ConcurrencyGroup):
                    yield step
                    yield from walk(step.children)

        return walk(self.steps)

    def restarts(self, track: Track = Track.SYSTEM) -> List[RestartNode]:
        return [step for step in self.of_type(RestartNode) if step.track is track]

    def hook_names(self) -> List[str]:
        return [step.hook for step in self.of_type(RunHook)]
