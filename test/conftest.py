from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Protocol, Sequence

import pytest

from mixedversion import HookRegistry, Plan, Track, UpgradeSpec
from mixedversion.perturb import generate_seed
from mixedversion.steps import AllowAutoUpgrade, PreventAutoUpgrade, RestartNode, WaitForAcknowledgment

PREDECESSORS = ["22.2.3", "23.1.4", "23.2.0"]

GOLDEN_DIR = Path(__file__).parent / "unit" / "golden"


def pytest_addoption(parser: pytest.Parser):
    parser.addoption("--seed", action="store", type=int, default=None, help="Seed for randomized tests")
    parser.addoption(
        "--seeds",
        action="store",
        type=int,
        default=50,
        help="How many consecutive seeds randomized tests go through",
    )
    parser.addoption(
        "--rewrite-golden",
        action="store_true",
        default=False,
        help="Rewrite golden transcripts instead of comparing against them",
    )


def pytest_configure(config: pytest.Config):
    # NOTE: with pytest-xdist every worker must use the seed of the controller.
    workerinput = getattr(config, "workerinput", None)
    if workerinput is not None:
        config.option.seed = workerinput["seed"]
    elif config.option.seed is None:
        config.option.seed = generate_seed()


@pytest.hookimpl(optionalhook=True)
def pytest_configure_node(node):
    node.workerinput["seed"] = node.config.option.seed


def pytest_report_header(config: pytest.Config) -> str:
    return f"seed: {config.option.seed}"


@pytest.fixture(scope="session")
def seed(pytestconfig) -> int:
    """Return a seed for randomized tests. Unless passed via
    command-line options it is generated automatically.
    """
    return pytestconfig.getoption("--seed")


@pytest.fixture(scope="session")
def seeds(pytestconfig, seed: int) -> range:
    return range(seed, seed + pytestconfig.getoption("--seeds"))


@pytest.fixture
def registry() -> HookRegistry:
    return HookRegistry()


class SpecFactory(Protocol):
    def __call__(
        self,
        predecessors: Sequence[str] = PREDECESSORS,
        num_upgrades: Optional[int] = None,
        **kwargs: Any,
    ) -> UpgradeSpec: ...


@pytest.fixture
def spec_factory(registry: HookRegistry) -> SpecFactory:
    def _spec(
        predecessors: Sequence[str] = PREDECESSORS,
        num_upgrades: Optional[int] = None,
        **kwargs: Any,
    ) -> UpgradeSpec:
        kwargs.setdefault("hooks", registry)
        kwargs.setdefault("seed", 1)
        if num_upgrades is None:
            num_upgrades = len(predecessors)
        return UpgradeSpec.create(predecessors, num_upgrades, **kwargs)

    return _spec


@pytest.fixture
def golden(pytestconfig):
    """
    Compares text against `test/unit/golden/<name>`,
    or rewrites the file when running with `--rewrite-golden`.
    """
    rewrite = pytestconfig.getoption("--rewrite-golden")

    def _compare(name: str, actual: str) -> None:
        path = GOLDEN_DIR / name
        if rewrite:
            path.write_text(actual)
            return
        assert actual == path.read_text()

    return _compare


class ScriptedRandom:
    """
    Stand-in for `random.Random` with predictable answers:
    - `shuffle` reverses the list;
    - `random` returns scripted coins one by one, then `default`;
    - `randint` returns the lower bound;
    - `choice` returns the last element.
    """

    def __init__(self, coins: Sequence[float] = (), default: float = 0.99) -> None:
        self.coins = list(coins)
        self.default = default

    def shuffle(self, x: List[Any]) -> None:
        x.reverse()

    def random(self) -> float:
        if self.coins:
            return self.coins.pop(0)
        return self.default

    def randint(self, a: int, b: int) -> int:
        return a

    def choice(self, seq: Sequence[Any]) -> Any:
        return seq[-1]


@dataclass
class UpgradePass:
    """Indices (in `plan.steps_in_order()`) of a track pass boundaries."""

    track: Track
    prevent: int
    allow: int
    wait: int


def upgrade_passes(plan: Plan) -> List[UpgradePass]:
    steps = plan.steps_in_order()
    passes = []
    for i, step in enumerate(steps):
        if not isinstance(step, PreventAutoUpgrade):
            continue
        allow = next(
            j for j in range(i, len(steps)) if isinstance(steps[j], AllowAutoUpgrade) and steps[j].track is step.track
        )
        wait = next(
            j
            for j in range(allow, len(steps))
            if isinstance(steps[j], WaitForAcknowledgment) and steps[j].track is step.track
        )
        passes.append(UpgradePass(step.track, i, allow, wait))
    return passes


def restarts_between(plan: Plan, track: Track, start: int, end: int) -> List[tuple[int, RestartNode]]:
    steps = plan.steps_in_order()
    return [
        (i, step)
        for i, step in enumerate(steps[start:end], start=start)
        if isinstance(step, RestartNode) and step.track is track
    ]
