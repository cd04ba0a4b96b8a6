from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import enum

from mixedversion.log import log


@enum.unique
class Track(enum.Enum):
    """
    An independently upgraded process group. Shared-process deployments only
    ever use the system track.
    """

    SYSTEM = "system"
    TENANT = "tenant"

    def __str__(self) -> str:
        return self.value


@enum.unique
class Phase(enum.Enum):
    INIT = "init"
    ON_STARTUP = "on-startup"
    BACKGROUND = "background"
    TEMPORARY_UPGRADE = "temporary-upgrade"
    ROLLBACK_UPGRADE = "rollback-upgrade"
    LAST_UPGRADE = "last-upgrade"
    RUNNING_UPGRADE_MIGRATIONS = "running-upgrade-migrations"
    FINALIZING = "finalizing"
    AFTER_UPGRADE_FINISHED = "after-upgrade-finished"
    UPGRADING_TENANT = "upgrading-tenant"
    TENANT_SETUP = "tenant-setup"

    @property
    def is_upgrade_round(self) -> bool:
        return self in [Phase.TEMPORARY_UPGRADE, Phase.ROLLBACK_UPGRADE, Phase.LAST_UPGRADE]

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class StageLabel:
    system: Phase
    tenant: Optional[Phase] = None

    def __str__(self) -> str:
        if self.tenant is None:
            return f"system:{self.system}"
        return f"system:{self.system};tenant:{self.tenant}"


class StageTracker:
    """
    Remembers which phase a track is in. It only moves when the planner says
    so, right before the steps of the new phase are emitted.

    A tracker of a track which does not exist yet (a separate-process tenant
    before it is started) has no phase.
    """

    track: Track
    phase: Optional[Phase]
    history: List[Tuple[int, Phase]]

    def __init__(self, track: Track, phase: Optional[Phase] = None) -> None:
        self.track = track
        self.phase = phase
        self.history = []
        if phase is not None:
            self.history.append((0, phase))

    def __repr__(self) -> str:
        return f"StageTracker(track={self.track}, phase={self.phase})"

    @property
    def is_started(self) -> bool:
        return self.phase is not None

    def enter(self, phase: Phase, at_step: int = 0) -> None:
        if phase == self.phase:
            return
        log.debug(f"{self.track} track: {self.phase} -> {phase} at step {at_step}")
        self.phase = phase
        self.history.append((at_step, phase))
