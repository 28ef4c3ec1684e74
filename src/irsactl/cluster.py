from __future__ import annotations

import dataclasses
import functools
import os
import typing

import botocore.exceptions
from botocore.exceptions import ClientError

import irsactl
import irsactl.aws_iam
import irsactl.irsa
import irsactl.kube
import irsactl.oidc
import irsactl.stacks

if typing.TYPE_CHECKING:
    import boto3
    import kubernetes


@dataclasses.dataclass(frozen=True)
class ClusterProviderConfig:
    cluster: irsactl.ClusterIdentity
    profile: str | None = None
    oidc_thumbprint: str | None = None


class ClusterProvider:
    """Access to an existing EKS cluster and the collaborators that act on it."""

    cfg: ClusterProviderConfig

    def __init__(self, cfg: ClusterProviderConfig):
        self.cfg = cfg

    @property
    def cluster(self) -> irsactl.ClusterIdentity:
        return self.cfg.cluster

    @property
    def exe_env(self) -> dict[str, str]:
        env = os.environ.copy()

        env["AWS_REGION"] = self.cluster.region
        if self.cfg.profile:
            env["AWS_PROFILE"] = self.cfg.profile

        return env

    @functools.cached_property
    def session(self) -> boto3.Session:
        try:
            return irsactl.aws_session(region=self.cluster.region, profile=self.cfg.profile)
        except botocore.exceptions.ProfileNotFound as e:
            raise irsactl.ClusterNotOperableError(str(e)) from e

    @functools.cached_property
    def description(self) -> dict[str, typing.Any]:
        eks_client = self.session.client("eks")

        try:
            return eks_client.describe_cluster(name=self.cluster.name)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") == "ResourceNotFoundException":
                msg = f"cluster {self.cluster} not found"
                raise irsactl.ClusterNotOperableError(msg) from e

            msg = f"describing cluster {self.cluster}: {e}"
            raise irsactl.ClusterNotOperableError(msg) from e
        except botocore.exceptions.BotoCoreError as e:
            msg = f"describing cluster {self.cluster}: {e}"
            raise irsactl.ClusterNotOperableError(msg) from e

    @functools.cached_property
    def account_id(self) -> str:
        whoami, ok = irsactl.aws_whoami(self.session)
        if not ok:
            msg = "unable to determine the current AWS account, check your credentials"
            raise irsactl.ClusterNotOperableError(msg)

        return whoami["Account"]

    def can_operate(self) -> None:
        status = self.description["cluster"].get("status", "UNKNOWN")

        if status not in irsactl.OPERABLE_CLUSTER_STATUSES:
            msg = f"cannot perform Kubernetes API operations on cluster {self.cluster} due to status {status!r}"
            raise irsactl.ClusterNotOperableError(msg)

        if irsactl.get_oidc_url(self.description) == "":
            msg = f"cluster {self.cluster} does not expose an OIDC issuer"
            raise irsactl.ClusterNotOperableError(msg)

        # credentials must resolve to an account
        _ = self.account_id

    def kubeconfig(self) -> dict[str, typing.Any]:
        return irsactl.aws_eks_kubeconfig(self.description, region=self.cluster.region, profile=self.cfg.profile)

    def kubernetes_client(self) -> kubernetes.client.CoreV1Api:
        return irsactl.kube.new_core_v1_api(self.kubeconfig())

    def oidc_manager(self) -> irsactl.oidc.OpenIDConnectManager:
        return irsactl.oidc.OpenIDConnectManager(
            iam_client=self.session.client("iam"),
            issuer_url=irsactl.get_oidc_url(self.description),
            account_id=self.account_id,
            partition=irsactl.aws_iam.partition_for_region(self.cluster.region),
            thumbprint_override=self.cfg.oidc_thumbprint,
            tags={
                irsactl.TagKeys.IRSACTL_CLUSTER_NAME: self.cluster.name,
                irsactl.TagKeys.IRSACTL_MANAGED_BY: irsactl.PULUMI_PROJECT,
            },
        )

    @functools.cached_property
    def stacks(self) -> irsactl.stacks.StackManager:
        return irsactl.stacks.StackManager(self.cluster, exe_env=self.exe_env)

    def stack_manager(self) -> irsactl.stacks.StackManager:
        return self.stacks

    def irsa_manager(self, oidc: irsactl.oidc.OpenIDConnectManager) -> irsactl.irsa.IRSAManager:
        return irsactl.irsa.IRSAManager(
            cluster_name=self.cluster.name,
            stack_manager=self.stack_manager(),
            oidc=oidc,
            kubeconfig=irsactl.dump_kubeconfig(self.kubeconfig()),
            account_id=self.account_id,
            partition=irsactl.aws_iam.partition_for_region(self.cluster.region),
        )
