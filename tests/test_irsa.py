import typing
from unittest.mock import MagicMock

import pytest

import irsactl
import irsactl.irsa
import irsactl.reconcile


@pytest.fixture
def stack_manager() -> MagicMock:
    stack_manager = MagicMock()
    stack_manager.stack_name.side_effect = lambda namespace, name: f"dinosaur_{namespace}_{name}"
    return stack_manager


@pytest.fixture
def irsa_manager(stack_manager: MagicMock) -> irsactl.irsa.IRSAManager:
    oidc = MagicMock()
    oidc.url_tail = "oidc.eks.us-east-2.amazonaws.com/id/ABC123"
    return irsactl.irsa.IRSAManager(
        cluster_name="dinosaur",
        stack_manager=stack_manager,
        oidc=oidc,
        kubeconfig="apiVersion: v1\nkind: Config\n",
        account_id="123456789012",
    )


@pytest.fixture
def service_accounts(make_sa: typing.Callable[..., irsactl.ServiceAccountSpec]) -> list[irsactl.ServiceAccountSpec]:
    return [make_sa("s3-reader"), make_sa("cluster-autoscaler", "kube-system")]


def test_create_iam_service_accounts_nothing_to_do(
    irsa_manager: irsactl.irsa.IRSAManager,
    stack_manager: MagicMock,
    capsys: pytest.CaptureFixture[str],
) -> None:
    irsa_manager.create_iam_service_accounts([], plan=False)

    stack_manager.provision.assert_not_called()
    assert "no iamserviceaccounts to create" in capsys.readouterr().out


def test_create_iam_service_accounts_plan(
    irsa_manager: irsactl.irsa.IRSAManager,
    stack_manager: MagicMock,
    service_accounts: list[irsactl.ServiceAccountSpec],
    capsys: pytest.CaptureFixture[str],
) -> None:
    irsa_manager.create_iam_service_accounts(service_accounts, plan=True)

    assert [c.args[0] for c in stack_manager.provision.call_args_list] == [
        "dinosaur_default_s3-reader",
        "dinosaur_kube-system_cluster-autoscaler",
    ]
    assert all(c.kwargs["plan"] is True for c in stack_manager.provision.call_args_list)

    captured = capsys.readouterr()
    assert "2 iamserviceaccount(s) to preview" in captured.out
    assert "no changes were applied, use --approve" in captured.err


def test_create_iam_service_accounts_apply(
    irsa_manager: irsactl.irsa.IRSAManager,
    stack_manager: MagicMock,
    service_accounts: list[irsactl.ServiceAccountSpec],
    capsys: pytest.CaptureFixture[str],
) -> None:
    irsa_manager.create_iam_service_accounts(service_accounts, plan=False)

    assert stack_manager.provision.call_count == 2
    captured = capsys.readouterr()
    assert "created iamserviceaccount 'default/s3-reader'" in captured.out
    assert "created iamserviceaccount 'kube-system/cluster-autoscaler'" in captured.out
    assert "--approve" not in captured.err


def test_create_iam_service_accounts_collects_failures(
    irsa_manager: irsactl.irsa.IRSAManager,
    stack_manager: MagicMock,
    service_accounts: list[irsactl.ServiceAccountSpec],
    command_error: typing.Any,
    capsys: pytest.CaptureFixture[str],
) -> None:
    stack_manager.provision.side_effect = [command_error("AccessDenied: iam:CreateRole"), None]

    with pytest.raises(irsactl.ProvisioningError, match="failed to create 1 of 2 iamserviceaccount") as excinfo:
        irsa_manager.create_iam_service_accounts(service_accounts, plan=False)

    assert excinfo.value.failures == {"default/s3-reader": "AccessDenied: iam:CreateRole"}
    assert stack_manager.provision.call_count == 2

    captured = capsys.readouterr()
    assert "create iamserviceaccount 'default/s3-reader' failed" in captured.err
    assert "created iamserviceaccount 'kube-system/cluster-autoscaler'" in captured.out


def test_create_iam_service_accounts_stops_when_cancelled(
    irsa_manager: irsactl.irsa.IRSAManager,
    stack_manager: MagicMock,
    service_accounts: list[irsactl.ServiceAccountSpec],
) -> None:
    ctx = irsactl.reconcile.RunContext()
    stack_manager.provision.side_effect = lambda *_args, **_kwargs: ctx.cancel()

    with pytest.raises(irsactl.RunCancelledError):
        irsa_manager.create_iam_service_accounts(service_accounts, plan=False, ctx=ctx)

    assert stack_manager.provision.call_count == 1
