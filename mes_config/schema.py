"""
MES configuration schema.

Frozen dataclasses produced by ``mes_config.loader`` from YAML.  Nothing
here reads files; the loader builds these, services consume them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from mes_kernel.domain.lot import AllocationStrategy, EligibilityPolicy, QualityStatus

# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationSettings:
    """Lot allocation behaviour."""

    admitted_quality_statuses: tuple[QualityStatus, ...] = (QualityStatus.PASS,)
    default_strategy: AllocationStrategy = AllocationStrategy.FIFO
    expiry_warning_days: int = 30

    def __post_init__(self) -> None:
        if not self.admitted_quality_statuses:
            raise ValueError("admitted_quality_statuses must not be empty")
        if self.default_strategy is AllocationStrategy.SPECIFIC:
            raise ValueError("default_strategy must be fifo or fefo")
        if self.expiry_warning_days < 0:
            raise ValueError(
                f"expiry_warning_days must be non-negative, got {self.expiry_warning_days}"
            )

    def eligibility_policy(self) -> EligibilityPolicy:
        return EligibilityPolicy(
            admitted_statuses=frozenset(self.admitted_quality_statuses)
        )


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowSettings:
    """
    Role grants per workflow action.

    ``role_grants[workflow][action]`` is the set of roles allowed to fire
    that action.  Actions without an entry are open to any actor.
    """

    role_grants: dict[str, dict[str, frozenset[str]]] = field(default_factory=dict)

    def grants_for(self, workflow: str) -> dict[str, frozenset[str]]:
        return dict(self.role_grants.get(workflow, {}))


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MesConfig:
    """The complete runtime configuration."""

    config_id: str
    version: int
    allocation: AllocationSettings
    workflows: WorkflowSettings
    database: DatabaseSettings
    checksum: str = ""
