"""Shared pytest fixtures for irsactl tests.

This module provides common fixtures used across test files:
- irsactl_cache: Sets IRSACTL_CACHE to a temporary directory
- pulumi_mocks: Pulumi mock class that records registered resources
- cluster: A ClusterIdentity used throughout the tests
- command_error: A pulumi.automation CommandError that is cheap to construct
- fake_provider: Factory for an in-memory cluster provider that counts queries
- make_sa: Factory for ServiceAccountSpec values
"""

import pathlib
import types
import typing
from unittest.mock import MagicMock

import pulumi
import pulumi.automation as auto
import pytest

import irsactl

# ============================================================================
# Environment Setup Fixtures
# ============================================================================


@pytest.fixture
def irsactl_cache(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> pathlib.Path:
    """Point IRSACTL_CACHE at a temporary directory and clear PULUMI_BACKEND_URL."""
    monkeypatch.setenv("IRSACTL_CACHE", str(tmp_path))
    monkeypatch.delenv("PULUMI_BACKEND_URL", raising=False)
    return tmp_path


# ============================================================================
# Pulumi Mock Fixtures
# ============================================================================


class RecordingPulumiMocks(pulumi.runtime.Mocks):
    """Pulumi mocks that echo inputs back as outputs and remember every resource.

    IAM roles additionally get an `arn` output derived from their name.
    """

    def __init__(self) -> None:
        self.resources: list[pulumi.runtime.MockResourceArgs] = []

    def new_resource(self, args: pulumi.runtime.MockResourceArgs) -> tuple[str | None, dict[typing.Any, typing.Any]]:
        self.resources.append(args)
        outputs = dict(args.inputs)
        if args.typ == "aws:iam/role:Role":
            outputs["arn"] = f"arn:aws:iam::123456789012:role/{args.inputs.get('name', args.name)}"

        return args.name, outputs

    def call(
        self, args: pulumi.runtime.MockCallArgs
    ) -> dict[typing.Any, typing.Any] | tuple[dict[typing.Any, typing.Any], list[tuple[str, str]] | None]:
        return {}

    def of_type(self, typ: str) -> list[pulumi.runtime.MockResourceArgs]:
        return [r for r in self.resources if r.typ == typ]


@pytest.fixture
def pulumi_mocks() -> RecordingPulumiMocks:
    """A fresh recording mocks instance, already installed for the test."""
    mocks = RecordingPulumiMocks()
    pulumi.runtime.set_mocks(mocks, preview=False)
    return mocks


class PulumiCommandError(auto.CommandError):
    """A CommandError that does not need a CommandResult."""

    def __init__(self, msg: str):
        Exception.__init__(self, msg)
        self.msg = msg

    def __str__(self) -> str:
        return self.msg


@pytest.fixture
def command_error() -> type[PulumiCommandError]:
    return PulumiCommandError


# ============================================================================
# Cluster Fixtures
# ============================================================================


@pytest.fixture
def cluster() -> irsactl.ClusterIdentity:
    return irsactl.ClusterIdentity(name="dinosaur", region="us-east-2")


class FakeOIDCManager:
    url_tail = "oidc.eks.us-east-2.amazonaws.com/id/ABC123"

    def __init__(self, *, exists: bool = True):
        self.exists = exists
        self.checks = 0

    def provider_exists(self) -> bool:
        self.checks += 1
        return self.exists


class FakeStackManager:
    def __init__(self, existing: typing.Iterable[irsactl.SERVICE_ACCOUNT_KEY] = ()):
        self.existing = frozenset(existing)
        self.queries = 0

    def stack_name(self, namespace: str, name: str) -> str:
        return f"dinosaur_{namespace}_{name}"

    def existing_stack_keys(
        self, service_accounts: typing.Iterable[irsactl.ServiceAccountSpec]
    ) -> frozenset[irsactl.SERVICE_ACCOUNT_KEY]:
        self.queries += 1
        return frozenset(sa.key for sa in service_accounts if sa.key in self.existing)


class FakeIRSAManager:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[dict[str, typing.Any]] = []

    def create_iam_service_accounts(
        self,
        service_accounts: typing.Sequence[irsactl.ServiceAccountSpec],
        plan: bool,  # noqa: FBT001
        *,
        override_existing: bool = False,
        ctx: typing.Any = None,
    ) -> None:
        self.calls.append(
            {
                "service_accounts": list(service_accounts),
                "plan": plan,
                "override_existing": override_existing,
                "ctx": ctx,
            }
        )
        if self.error is not None:
            raise self.error


class FakeClusterProvider:
    """In-memory cluster provider; every state-querying call is counted."""

    def __init__(
        self,
        *,
        operable: bool = True,
        oidc_exists: bool = True,
        service_accounts: typing.Iterable[irsactl.SERVICE_ACCOUNT_KEY] = (),
        stacks: typing.Iterable[irsactl.SERVICE_ACCOUNT_KEY] = (),
        provisioning_error: Exception | None = None,
    ):
        self.operable = operable
        self.oidc = FakeOIDCManager(exists=oidc_exists)
        self.existing_service_accounts = set(service_accounts)
        self.stacks = FakeStackManager(stacks)
        self.irsa = FakeIRSAManager(error=provisioning_error)
        self.kubernetes_client_calls = 0
        self.listed_namespaces: list[str] = []

    @property
    def state_queries(self) -> int:
        return self.kubernetes_client_calls + self.stacks.queries

    def can_operate(self) -> None:
        if not self.operable:
            msg = "cannot perform Kubernetes API operations on cluster 'dinosaur' due to status 'CREATING'"
            raise irsactl.ClusterNotOperableError(msg)

    def oidc_manager(self) -> FakeOIDCManager:
        return self.oidc

    def kubernetes_client(self) -> MagicMock:
        self.kubernetes_client_calls += 1

        def list_namespaced_service_account(namespace: str) -> types.SimpleNamespace:
            self.listed_namespaces.append(namespace)
            return types.SimpleNamespace(
                items=[
                    types.SimpleNamespace(metadata=types.SimpleNamespace(name=name))
                    for ns, name in sorted(self.existing_service_accounts)
                    if ns == namespace
                ]
            )

        core_api = MagicMock()
        core_api.list_namespaced_service_account.side_effect = list_namespaced_service_account
        return core_api

    def stack_manager(self) -> FakeStackManager:
        return self.stacks

    def irsa_manager(self, oidc: FakeOIDCManager) -> FakeIRSAManager:
        return self.irsa


@pytest.fixture
def fake_provider() -> type[FakeClusterProvider]:
    """Returns the FakeClusterProvider class so tests can build one per scenario.

    Usage:
        def test_something(fake_provider):
            provider = fake_provider(oidc_exists=False)
    """
    return FakeClusterProvider


def sa(name: str, namespace: str = "default", **kwargs: typing.Any) -> irsactl.ServiceAccountSpec:
    kwargs.setdefault("attach_policy_arns", ("arn:aws:iam::aws:policy/AmazonS3ReadOnlyAccess",))
    return irsactl.ServiceAccountSpec(name=name, namespace=namespace, **kwargs)


@pytest.fixture
def make_sa() -> typing.Callable[..., irsactl.ServiceAccountSpec]:
    """Factory for ServiceAccountSpec with a valid policy ARN attached by default."""
    return sa
