"""
Reconciliation of a batch of desired iamserviceaccounts against an existing cluster.

A run moves through `RunState` strictly in order:

    Init -> PreconditionChecked -> StateLoaded -> Filtered -> Delegated -> Done

and any error moves it to `Failed` and propagates to the caller. There is no
retry transition; a failed run is re-invoked from the start.
"""

from __future__ import annotations

import dataclasses
import datetime
import enum
import threading
import time
import typing

import irsactl
import irsactl.console
import irsactl.filter
import irsactl.kube

if typing.TYPE_CHECKING:
    import collections.abc

    import irsactl.irsa
    import irsactl.oidc
    import irsactl.stacks


class Mode(enum.StrEnum):
    ROLE_ONLY = "role-only"
    OVERRIDE_EXISTING = "override-existing"
    DEFAULT = "default"


# (role_only, override_existing) -> mode
MODE_TABLE: dict[tuple[bool, bool], Mode] = {
    (True, True): Mode.ROLE_ONLY,
    (True, False): Mode.ROLE_ONLY,
    (False, True): Mode.OVERRIDE_EXISTING,
    (False, False): Mode.DEFAULT,
}


def select_mode(*, role_only: bool, override_existing: bool) -> Mode:
    return MODE_TABLE[(bool(role_only), bool(override_existing))]


def mode_warnings(mode: Mode, *, override_existing: bool, skipped: int) -> list[str]:
    if mode == Mode.ROLE_ONLY:
        warnings = [
            "serviceaccounts in Kubernetes will not be created or modified, since the option --role-only is used"
        ]
        if override_existing:
            warnings.append("when option --role-only is used passing --override-existing-serviceaccounts has no effect")

        return warnings

    if mode == Mode.OVERRIDE_EXISTING:
        return [
            "metadata of serviceaccounts that exist in Kubernetes will be updated, "
            "as --override-existing-serviceaccounts was set"
        ]

    if skipped > 0:
        return [
            "serviceaccounts that exist in Kubernetes will be excluded, "
            "use --override-existing-serviceaccounts to override"
        ]

    return []


class RunState(enum.StrEnum):
    INIT = "Init"
    PRECONDITION_CHECKED = "PreconditionChecked"
    STATE_LOADED = "StateLoaded"
    FILTERED = "Filtered"
    DELEGATED = "Delegated"
    DONE = "Done"
    FAILED = "Failed"


TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.INIT: frozenset({RunState.PRECONDITION_CHECKED, RunState.FAILED}),
    RunState.PRECONDITION_CHECKED: frozenset({RunState.STATE_LOADED, RunState.FAILED}),
    RunState.STATE_LOADED: frozenset({RunState.FILTERED, RunState.FAILED}),
    RunState.FILTERED: frozenset({RunState.DELEGATED, RunState.FAILED}),
    RunState.DELEGATED: frozenset({RunState.DONE, RunState.FAILED}),
    RunState.DONE: frozenset(),
    RunState.FAILED: frozenset(),
}


@dataclasses.dataclass
class RunContext:
    """Deadline and cooperative cancellation for a single run."""

    timeout: datetime.timedelta | None = None
    cancelled: threading.Event = dataclasses.field(default_factory=threading.Event)
    started: float = dataclasses.field(default_factory=time.monotonic)

    def cancel(self) -> None:
        self.cancelled.set()

    def remaining(self) -> datetime.timedelta | None:
        if self.timeout is None:
            return None

        return self.timeout - datetime.timedelta(seconds=time.monotonic() - self.started)

    def check(self) -> None:
        if self.cancelled.is_set():
            msg = "run cancelled"
            raise irsactl.RunCancelledError(msg)

        remaining = self.remaining()
        if remaining is not None and remaining <= datetime.timedelta(0):
            msg = f"timed out after {self.timeout}"
            raise irsactl.RunCancelledError(msg)


@dataclasses.dataclass(frozen=True)
class CreateOptions:
    override_existing: bool = False
    role_only: bool = False
    plan: bool = True


class OIDCManager(typing.Protocol):
    def provider_exists(self) -> bool: ...


class ClusterHandle(typing.Protocol):
    def can_operate(self) -> None: ...

    def oidc_manager(self) -> irsactl.oidc.OpenIDConnectManager: ...

    def kubernetes_client(self) -> typing.Any: ...

    def stack_manager(self) -> irsactl.stacks.StackManager: ...

    def irsa_manager(self, oidc: irsactl.oidc.OpenIDConnectManager) -> irsactl.irsa.IRSAManager: ...


@dataclasses.dataclass(frozen=True)
class RunResult:
    state: RunState
    mode: Mode
    decisions: tuple[tuple[irsactl.ServiceAccountSpec, irsactl.filter.Decision], ...]
    targets: tuple[irsactl.ServiceAccountSpec, ...]


def ensure_oidc_provider_present(cluster: irsactl.ClusterIdentity, oidc: OIDCManager) -> None:
    if oidc.provider_exists():
        return

    irsactl.console.warning(
        "no IAM OIDC provider associated with cluster, try "
        f"'irsactl utils associate-iam-oidc-provider --region={cluster.region} --cluster={cluster.name} --approve'"
    )
    msg = "unable to create iamserviceaccount(s) without IAM OIDC provider enabled"
    raise irsactl.PreconditionError(msg)


def load_existence_state(
    service_accounts: collections.abc.Sequence[irsactl.ServiceAccountSpec],
    provider: ClusterHandle,
    ctx: RunContext,
) -> irsactl.filter.ExistenceState:
    ctx.check()
    existing_service_accounts = irsactl.kube.existing_service_account_keys(
        provider.kubernetes_client(),
        service_accounts,
        check=ctx.check,
    )

    ctx.check()
    existing_stacks = provider.stack_manager().existing_stack_keys(service_accounts)

    return irsactl.filter.ExistenceState(
        service_accounts=existing_service_accounts,
        stacks=existing_stacks,
    )


class CreateIAMServiceAccountsRun:
    cfg: irsactl.ClusterConfig
    options: CreateOptions
    provider: ClusterHandle
    ctx: RunContext
    state: RunState

    def __init__(
        self,
        cfg: irsactl.ClusterConfig,
        options: CreateOptions,
        provider: ClusterHandle,
        ctx: RunContext | None = None,
    ):
        self.cfg = cfg
        self.options = options
        self.provider = provider
        self.ctx = ctx or RunContext()
        self.state = RunState.INIT

    def _transition(self, state: RunState) -> None:
        if state not in TRANSITIONS[self.state]:
            msg = f"invalid run transition {self.state} -> {state}"
            raise RuntimeError(msg)

        irsactl.console.debug(f"run state {self.state} -> {state}")
        self.state = state

    def run(self) -> RunResult:
        if self.state != RunState.INIT:
            msg = f"a run can only start from {RunState.INIT}, not {self.state}"
            raise RuntimeError(msg)

        try:
            return self._run()
        except Exception:
            self.state = RunState.FAILED
            raise

    def _run(self) -> RunResult:
        self.ctx.check()
        self.provider.can_operate()

        self.ctx.check()
        oidc = self.provider.oidc_manager()
        ensure_oidc_provider_present(self.cfg.metadata, oidc)
        self._transition(RunState.PRECONDITION_CHECKED)

        existing = load_existence_state(self.cfg.service_accounts, self.provider, self.ctx)
        self._transition(RunState.STATE_LOADED)

        decisions = irsactl.filter.decide(self.cfg.service_accounts, existing, self.options.override_existing)
        irsactl.filter.log_decisions(decisions)
        targets = irsactl.filter.targets_from_decisions(decisions)
        self._transition(RunState.FILTERED)

        mode = select_mode(role_only=self.options.role_only, override_existing=self.options.override_existing)
        skipped = sum(1 for _, decision in decisions if decision == irsactl.filter.Decision.SKIP_EXISTING)
        for warning in mode_warnings(mode, override_existing=self.options.override_existing, skipped=skipped):
            irsactl.console.warning(warning)

        irsactl.console.debug_json("cfg.json", self.cfg.to_dict())

        self.ctx.check()
        irsa = self.provider.irsa_manager(oidc)
        self._transition(RunState.DELEGATED)
        irsa.create_iam_service_accounts(
            targets,
            self.options.plan,
            override_existing=mode == Mode.OVERRIDE_EXISTING,
            ctx=self.ctx,
        )
        self._transition(RunState.DONE)

        return RunResult(
            state=self.state,
            mode=mode,
            decisions=tuple(decisions),
            targets=tuple(targets),
        )


def create_iam_service_accounts(
    cfg: irsactl.ClusterConfig,
    options: CreateOptions,
    provider: ClusterHandle,
    ctx: RunContext | None = None,
) -> RunResult:
    return CreateIAMServiceAccountsRun(cfg, options, provider, ctx).run()
