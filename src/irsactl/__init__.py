from __future__ import annotations

import dataclasses
import enum
import re
import typing

import boto3
import yaml

if typing.TYPE_CHECKING:
    import collections.abc

DEFAULT_NAMESPACE = "default"
DEFAULT_TIMEOUT = "25m"
IRSA_AUDIENCE = "sts.amazonaws.com"
MAX_ROLE_NAME_LENGTH = 64
PULUMI_PROJECT = "irsactl"
PATCH_FORCE_ANNOTATION = "pulumi.com/patchForce"
ROLE_ARN_ANNOTATION = "eks.amazonaws.com/role-arn"

CONFIG_API_VERSION = "irsactl/v1alpha1"
CONFIG_KIND = "ClusterConfig"

OPERABLE_CLUSTER_STATUSES = frozenset({"ACTIVE", "UPDATING"})

ARN_REGEX = re.compile("^arn:aws[a-z-]*:[a-z0-9-]+:[a-z0-9-]*:([0-9]{12}|aws)?:.+$")
IAM_ROLE_ARN_REGEX = re.compile("^arn:aws[a-z-]*:iam::[0-9]{12}:role/.+$")

SERVICE_ACCOUNT_KEY = tuple[str, str]


class TagKeys(enum.StrEnum):
    IRSACTL_CLUSTER_NAME = "irsactl.io/cluster-name"
    IRSACTL_IAM_SERVICE_ACCOUNT_NAME = "irsactl.io/iamserviceaccount-name"
    IRSACTL_MANAGED_BY = "irsactl.io/managed-by"


class Labels(enum.StrEnum):
    MANAGED_BY = "app.kubernetes.io/managed-by"


class IRSAError(Exception):
    pass


class LoadError(IRSAError):
    pass


class ClusterNotOperableError(IRSAError):
    pass


class PreconditionError(IRSAError):
    pass


class StateQueryError(IRSAError):
    pass


class RunCancelledError(IRSAError):
    pass


class ProvisioningError(IRSAError):
    def __init__(self, msg: str, failures: typing.Mapping[str, str] | None = None):
        super().__init__(msg)
        self.failures: dict[str, str] = dict(failures or {})


@dataclasses.dataclass(frozen=True)
class ClusterIdentity:
    name: str
    region: str

    def __str__(self) -> str:
        return f"{self.name!r} in {self.region!r} region"


@dataclasses.dataclass(frozen=True)
class ServiceAccountSpec:
    name: str
    namespace: str = DEFAULT_NAMESPACE
    attach_policy_arns: tuple[str, ...] = ()
    attach_role_arn: str | None = None
    role_name: str | None = None
    role_only: bool = False
    tags: typing.Mapping[str, str] = dataclasses.field(default_factory=dict)

    @property
    def key(self) -> SERVICE_ACCOUNT_KEY:
        return (self.namespace, self.name)

    @property
    def name_string(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclasses.dataclass(frozen=True)
class ClusterConfig:
    metadata: ClusterIdentity
    service_accounts: tuple[ServiceAccountSpec, ...] = ()
    with_oidc: bool = True
    oidc_thumbprint: str | None = None

    def with_service_accounts(self, service_accounts: collections.abc.Iterable[ServiceAccountSpec]) -> ClusterConfig:
        return dataclasses.replace(self, service_accounts=tuple(service_accounts))

    def to_dict(self) -> dict[str, typing.Any]:
        return {
            "apiVersion": CONFIG_API_VERSION,
            "kind": CONFIG_KIND,
            "metadata": {"name": self.metadata.name, "region": self.metadata.region},
            "iam": {
                "withOIDC": self.with_oidc,
                "oidcThumbprint": self.oidc_thumbprint,
                "serviceAccounts": [
                    {
                        "metadata": {"name": sa.name, "namespace": sa.namespace},
                        "attachPolicyARNs": list(sa.attach_policy_arns),
                        "attachRoleARN": sa.attach_role_arn,
                        "roleName": sa.role_name,
                        "roleOnly": sa.role_only,
                        "tags": dict(sa.tags),
                    }
                    for sa in self.service_accounts
                ],
            },
        }


class AWSCallerIdentity(typing.TypedDict):
    UserId: str
    Account: str
    Arn: str


def aws_session(
    region: str | None = None,
    profile: str | None = None,
    exe_env: dict[str, str] | None = None,
) -> boto3.Session:
    return boto3.Session(
        aws_access_key_id=exe_env.get("AWS_ACCESS_KEY_ID") if exe_env else None,
        aws_secret_access_key=exe_env.get("AWS_SECRET_ACCESS_KEY") if exe_env else None,
        aws_session_token=exe_env.get("AWS_SESSION_TOKEN") if exe_env else None,
        profile_name=profile,
        region_name=region,
    )


def aws_whoami(session: boto3.Session) -> tuple[AWSCallerIdentity, bool]:
    sts_client = session.client("sts")

    try:
        response = sts_client.get_caller_identity()
    except Exception:
        return typing.cast(AWSCallerIdentity, {}), False
    else:
        return response, True


def get_oidc_url(cluster: dict[str, typing.Any]) -> str:
    return cluster["cluster"].get("identity", {}).get("oidc", {}).get("issuer") or ""


def aws_eks_kubeconfig(
    cluster: dict[str, typing.Any],
    region: str,
    profile: str | None = None,
) -> dict[str, typing.Any]:
    """Build a kubeconfig for an EKS cluster from its `describe_cluster` response.

    Authentication is delegated to `aws eks get-token`, so the resulting config
    works for both the Kubernetes client and the Pulumi Kubernetes provider.
    """
    cluster_name = cluster["cluster"]["name"]
    exec_env = None
    if profile:
        exec_env = [{"name": "AWS_PROFILE", "value": profile}]

    return {
        "apiVersion": "v1",
        "clusters": [
            {
                "cluster": {
                    "certificate-authority-data": cluster["cluster"]["certificateAuthority"]["data"],
                    "server": cluster["cluster"]["endpoint"],
                },
                "name": cluster_name,
            }
        ],
        "contexts": [{"context": {"cluster": cluster_name, "user": cluster_name}, "name": cluster_name}],
        "current-context": cluster_name,
        "kind": "Config",
        "preferences": {},
        "users": [
            {
                "name": cluster_name,
                "user": {
                    "exec": {
                        "apiVersion": "client.authentication.k8s.io/v1beta1",
                        "args": ["--region", region, "eks", "get-token", "--cluster-name", cluster_name],
                        "command": "aws",
                        "env": exec_env,
                        "provideClusterInfo": False,
                    }
                },
            }
        ],
    }


def dump_kubeconfig(kubeconfig: dict[str, typing.Any]) -> str:
    return yaml.dump(kubeconfig, default_flow_style=False)
