from __future__ import annotations

import dataclasses
import enum
import fnmatch
import typing

import irsactl
import irsactl.console

if typing.TYPE_CHECKING:
    import collections.abc


class Decision(enum.StrEnum):
    CREATE = "create"
    SKIP_EXISTING = "skip-existing"
    OVERRIDE_EXISTING = "override-existing"


@dataclasses.dataclass(frozen=True)
class ExistenceState:
    service_accounts: frozenset[irsactl.SERVICE_ACCOUNT_KEY] = frozenset()
    stacks: frozenset[irsactl.SERVICE_ACCOUNT_KEY] = frozenset()

    def contains(self, key: irsactl.SERVICE_ACCOUNT_KEY) -> bool:
        return key in self.service_accounts or key in self.stacks


def decide(
    desired: collections.abc.Sequence[irsactl.ServiceAccountSpec],
    existing: ExistenceState,
    override: bool,  # noqa: FBT001
) -> list[tuple[irsactl.ServiceAccountSpec, Decision]]:
    decisions = []
    for sa in desired:
        if not existing.contains(sa.key):
            decisions.append((sa, Decision.CREATE))
        elif override:
            decisions.append((sa, Decision.OVERRIDE_EXISTING))
        else:
            decisions.append((sa, Decision.SKIP_EXISTING))

    return decisions


def targets_from_decisions(
    decisions: collections.abc.Iterable[tuple[irsactl.ServiceAccountSpec, Decision]],
) -> list[irsactl.ServiceAccountSpec]:
    return [sa for sa, decision in decisions if decision != Decision.SKIP_EXISTING]


def compute_targets(
    desired: collections.abc.Sequence[irsactl.ServiceAccountSpec],
    existing: ExistenceState,
    override: bool,  # noqa: FBT001
) -> list[irsactl.ServiceAccountSpec]:
    return targets_from_decisions(decide(desired, existing, override))


def log_decisions(decisions: collections.abc.Sequence[tuple[irsactl.ServiceAccountSpec, Decision]]) -> None:
    skipped = [sa.name_string for sa, decision in decisions if decision == Decision.SKIP_EXISTING]
    overridden = [sa.name_string for sa, decision in decisions if decision == Decision.OVERRIDE_EXISTING]
    included = [sa.name_string for sa, decision in decisions if decision != Decision.SKIP_EXISTING]

    if overridden:
        irsactl.console.info(
            f"{len(overridden)} existing iamserviceaccount(s) ({', '.join(overridden)}) will be updated"
        )

    if skipped:
        irsactl.console.info(
            f"{len(skipped)} existing iamserviceaccount(s) ({', '.join(skipped)}) will be excluded"
        )

    if included:
        irsactl.console.info(
            f"{len(included)} iamserviceaccount(s) ({', '.join(included)}) will be included "
            "(based on the include/exclude rules)"
        )


class IAMServiceAccountFilter:
    """
    Include/exclude glob rules for service accounts, matched against `namespace/name`.

    With no include rules every service account is included; exclusion always wins.
    """

    include: list[str]
    exclude: list[str]

    def __init__(
        self,
        include: collections.abc.Iterable[str] | None = None,
        exclude: collections.abc.Iterable[str] | None = None,
    ):
        self.include = [p.strip() for p in include or [] if p.strip() != ""]
        self.exclude = [p.strip() for p in exclude or [] if p.strip() != ""]

    @property
    def empty(self) -> bool:
        return len(self.include) == 0 and len(self.exclude) == 0

    def matches(self, sa: irsactl.ServiceAccountSpec) -> bool:
        if any(fnmatch.fnmatchcase(sa.name_string, pattern) for pattern in self.exclude):
            return False

        if len(self.include) == 0:
            return True

        return any(fnmatch.fnmatchcase(sa.name_string, pattern) for pattern in self.include)

    def filter_matching(
        self, service_accounts: collections.abc.Iterable[irsactl.ServiceAccountSpec]
    ) -> list[irsactl.ServiceAccountSpec]:
        return [sa for sa in service_accounts if self.matches(sa)]
