from __future__ import annotations

from itertools import count
from typing import Iterator, List, Sequence

from mixedversion.plan import Plan
from mixedversion.steps import ConcurrencyGroup, Step

HEADER_WIDTH = 20


def _header(name: str, value: object) -> str:
    return f"{name + ':':<{HEADER_WIDTH}}{value}"


def _render_steps(steps: Sequence[Step], prefix: str, numbers: Iterator[int], lines: List[str]) -> None:
    for i, step in enumerate(steps):
        is_last = i == len(steps) - 1
        branch = "└── " if is_last else "├── "

        if isinstance(step, ConcurrencyGroup):
            lines.append(f"{prefix}{branch}{step.describe()}")
            _render_steps(step.children, prefix + ("    " if is_last else "│   "), numbers, lines)
        else:
            lines.append(f"{prefix}{branch}{step.describe()} [stage={step.stage}] ({next(numbers)})")


def render(plan: Plan) -> str:
    """
    Tree transcript of a plan, used as a golden-file oracle:

        Seed:               42
        Upgrades:           v22.2.3 → <current>
        Deployment mode:    shared-process
        Plan:
        ├── install fixtures for version "v22.2.3" [stage=system:init] (1)
        ├── run following steps concurrently
        │   ├── run "h1" [stage=system:last-upgrade] (6)
        │   └── run "h2" after 50ms delay [stage=system:last-upgrade] (7)
        └── ...

    Leaf steps are numbered depth first, starting from 1. Groups are not
    numbered. The transcript only depends on the plan, so rendering the same
    plan twice yields the same text.
    """
    lines = [
        _header("Seed", plan.seed),
        _header("Upgrades", " → ".join(str(v) for v in plan.path)),
        _header("Deployment mode", plan.deployment_mode),
        "Plan:",
    ]
    _render_steps(plan.steps, "", count(1), lines)
    return "\n".join(lines) + "\n"
