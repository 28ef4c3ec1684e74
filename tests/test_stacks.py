import pathlib
import types
import typing
from unittest.mock import MagicMock, patch

import pulumi.automation as auto
import pytest

import irsactl
import irsactl.stacks


@pytest.fixture
def stack_manager(cluster: irsactl.ClusterIdentity, irsactl_cache: pathlib.Path) -> irsactl.stacks.StackManager:
    return irsactl.stacks.StackManager(cluster, exe_env={})


def test_stack_manager_defaults(stack_manager: irsactl.stacks.StackManager, irsactl_cache: pathlib.Path) -> None:
    assert stack_manager.backend_url == f"file://{irsactl_cache / 'state'}"
    assert stack_manager.secrets_provider is None
    assert stack_manager.env_vars == {"AWS_REGION": "us-east-2", "PULUMI_CONFIG_PASSPHRASE": ""}


def test_stack_manager_secrets_provider_from_env(cluster: irsactl.ClusterIdentity) -> None:
    stack_manager = irsactl.stacks.StackManager(
        cluster,
        backend_url="s3://bucket",
        exe_env={"IRSACTL_SECRETS_PROVIDER": "awskms://alias/irsactl", "AWS_REGION": "us-west-2"},
    )

    assert stack_manager.secrets_provider == "awskms://alias/irsactl"
    assert stack_manager.env_vars["AWS_REGION"] == "us-west-2"
    assert "PULUMI_CONFIG_PASSPHRASE" not in stack_manager.env_vars


def test_stack_name(stack_manager: irsactl.stacks.StackManager) -> None:
    assert stack_manager.stack_name("kube-system", "cluster-autoscaler") == "dinosaur_kube-system_cluster-autoscaler"
    assert stack_manager.stack_name("default", "weird:name") == "dinosaur_default_weird-name"


def test_existing_stack_keys(stack_manager: irsactl.stacks.StackManager) -> None:
    workspace = MagicMock()
    workspace.list_stacks.return_value = [
        types.SimpleNamespace(name="dinosaur_default_s3-reader"),
        types.SimpleNamespace(name="organization/irsactl/dinosaur_kube-system_cluster-autoscaler"),
        types.SimpleNamespace(name="other-cluster_default_dns"),
    ]
    stack_manager.__dict__["workspace"] = workspace

    existing = stack_manager.existing_stack_keys(
        [
            irsactl.ServiceAccountSpec(name="s3-reader"),
            irsactl.ServiceAccountSpec(name="cluster-autoscaler", namespace="kube-system"),
            irsactl.ServiceAccountSpec(name="dns"),
        ]
    )

    assert existing == frozenset({("default", "s3-reader"), ("kube-system", "cluster-autoscaler")})
    assert stack_manager.stack_exists("default", "s3-reader")
    workspace.list_stacks.assert_called_once()


def test_stack_names_error(stack_manager: irsactl.stacks.StackManager, command_error: typing.Any) -> None:
    workspace = MagicMock()
    workspace.list_stacks.side_effect = command_error("backend unreachable")
    stack_manager.__dict__["workspace"] = workspace

    with pytest.raises(irsactl.StateQueryError, match="backend unreachable"):
        _ = stack_manager.stack_names


@pytest.mark.parametrize(("plan", "method"), [(True, "preview"), (False, "up")])
def test_provision(
    stack_manager: irsactl.stacks.StackManager,
    irsactl_cache: pathlib.Path,
    plan: bool,  # noqa: FBT001
    method: str,
) -> None:
    program = MagicMock()
    on_output = MagicMock()

    with patch("irsactl.stacks.auto.create_or_select_stack") as mock_create_or_select_stack:
        stack = mock_create_or_select_stack.return_value
        result = stack_manager.provision("dinosaur_default_s3-reader", program, plan=plan, on_output=on_output)

    assert result is getattr(stack, method).return_value
    getattr(stack, method).assert_called_once_with(on_output=on_output)
    key, value = stack.set_config.call_args.args
    assert key == "aws:region"
    assert value.value == "us-east-2"

    kwargs = mock_create_or_select_stack.call_args.kwargs
    assert kwargs["stack_name"] == "dinosaur_default_s3-reader"
    assert kwargs["project_name"] == "irsactl"
    assert kwargs["program"] is program
    assert (irsactl_cache / "state").is_dir()
