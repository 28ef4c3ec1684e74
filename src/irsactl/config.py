from __future__ import annotations

import dataclasses
import typing

import botocore.exceptions
import deepmerge  # type: ignore
import yaml

import irsactl
import irsactl.aws_iam
import irsactl.filter

if typing.TYPE_CHECKING:
    import collections.abc
    import pathlib

SERVICE_ACCOUNT_FIELDS = {
    "attachPolicyARNs": "attach_policy_arns",
    "attachRoleARN": "attach_role_arn",
    "roleName": "role_name",
    "roleOnly": "role_only",
    "tags": "tags",
}


@dataclasses.dataclass(frozen=True)
class CreateIAMServiceAccountFlags:
    cluster: str | None = None
    region: str | None = None
    profile: str | None = None
    config_file: pathlib.Path | None = None
    name: str | None = None
    namespace: str | None = None
    attach_policy_arns: tuple[str, ...] = ()
    attach_role_arn: str | None = None
    role_name: str | None = None
    role_only: bool = False
    oidc_thumbprint: str | None = None
    tags: typing.Mapping[str, str] = dataclasses.field(default_factory=dict)
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()

    def service_account_flags_set(self) -> list[str]:
        return [
            flag
            for flag, value in (
                ("--name", self.name),
                ("--namespace", self.namespace),
                ("--attach-policy-arn", self.attach_policy_arns),
                ("--attach-role-arn", self.attach_role_arn),
                ("--role-name", self.role_name),
                ("--tags", self.tags),
            )
            if value
        ]


def default_config_dict() -> dict[str, typing.Any]:
    return {
        "apiVersion": irsactl.CONFIG_API_VERSION,
        "kind": irsactl.CONFIG_KIND,
        "metadata": {
            "name": "",
            "region": "",
        },
        "iam": {
            "withOIDC": True,
            "oidcThumbprint": None,
            "serviceAccounts": [],
        },
    }


def read_config_file(path: pathlib.Path) -> dict[str, typing.Any]:
    try:
        raw = yaml.safe_load(path.read_text())
    except (OSError, yaml.YAMLError) as e:
        msg = f"reading config file {str(path)!r}: {e}"
        raise irsactl.LoadError(msg) from e

    if not isinstance(raw, dict):
        msg = f"config file {str(path)!r} must contain a mapping"
        raise irsactl.LoadError(msg)

    if raw.get("apiVersion", irsactl.CONFIG_API_VERSION) != irsactl.CONFIG_API_VERSION:
        msg = f"unsupported apiVersion {raw['apiVersion']!r}, expected {irsactl.CONFIG_API_VERSION!r}"
        raise irsactl.LoadError(msg)

    if raw.get("kind", irsactl.CONFIG_KIND) != irsactl.CONFIG_KIND:
        msg = f"unsupported kind {raw['kind']!r}, expected {irsactl.CONFIG_KIND!r}"
        raise irsactl.LoadError(msg)

    merged = default_config_dict()
    deepmerge.always_merger.merge(merged, raw)

    return merged


def load_service_account_dict(sa_dict: typing.Any, index: int) -> irsactl.ServiceAccountSpec:
    where = f"iam.serviceAccounts[{index}]"
    if not isinstance(sa_dict, dict):
        msg = f"{where} must be a mapping"
        raise irsactl.LoadError(msg)

    metadata = sa_dict.get("metadata") or {}
    if not isinstance(metadata, dict):
        msg = f"{where}.metadata must be a mapping"
        raise irsactl.LoadError(msg)

    kwargs: dict[str, typing.Any] = {
        "name": str(metadata.get("name") or "").strip(),
        "namespace": str(metadata.get("namespace") or irsactl.DEFAULT_NAMESPACE).strip(),
    }

    for key, value in sa_dict.items():
        if key == "metadata" or value is None:
            continue

        if key not in SERVICE_ACCOUNT_FIELDS:
            msg = f"unknown field {key!r} in {where}"
            raise irsactl.LoadError(msg)

        kwargs[SERVICE_ACCOUNT_FIELDS[key]] = value

    if not isinstance(kwargs.get("attach_policy_arns", []), list):
        msg = f"{where}.attachPolicyARNs must be a list"
        raise irsactl.LoadError(msg)

    if not isinstance(kwargs.get("tags", {}), dict):
        msg = f"{where}.tags must be a mapping"
        raise irsactl.LoadError(msg)

    if not isinstance(kwargs.get("role_only", False), bool):
        msg = f"{where}.roleOnly must be a boolean"
        raise irsactl.LoadError(msg)

    for key, field in (("attachRoleARN", "attach_role_arn"), ("roleName", "role_name")):
        if not isinstance(kwargs.get(field, ""), str):
            msg = f"{where}.{key} must be a string"
            raise irsactl.LoadError(msg)

    kwargs["attach_policy_arns"] = tuple(str(arn).strip() for arn in kwargs.get("attach_policy_arns", []))
    kwargs["tags"] = {str(k): str(v) for k, v in kwargs.get("tags", {}).items()}

    return irsactl.ServiceAccountSpec(**kwargs)


def load_cluster_config_dict(data: dict[str, typing.Any]) -> irsactl.ClusterConfig:
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        msg = "metadata must be a mapping"
        raise irsactl.LoadError(msg)

    iam = data.get("iam") or {}
    if not isinstance(iam, dict):
        msg = "iam must be a mapping"
        raise irsactl.LoadError(msg)

    service_accounts = iam.get("serviceAccounts") or []
    if not isinstance(service_accounts, list):
        msg = "iam.serviceAccounts must be a list"
        raise irsactl.LoadError(msg)

    return irsactl.ClusterConfig(
        metadata=irsactl.ClusterIdentity(
            name=str(metadata.get("name") or ""),
            region=str(metadata.get("region") or ""),
        ),
        service_accounts=tuple(load_service_account_dict(sa, i) for i, sa in enumerate(service_accounts)),
        with_oidc=bool(iam.get("withOIDC", True)),
        oidc_thumbprint=iam.get("oidcThumbprint") or None,
    )


def validate_service_account(sa: irsactl.ServiceAccountSpec) -> None:
    if sa.name.strip() == "":
        msg = f"iamserviceaccount in namespace {sa.namespace!r} has no name"
        raise irsactl.LoadError(msg)

    if sa.namespace.strip() == "":
        msg = f"iamserviceaccount {sa.name!r} has an empty namespace"
        raise irsactl.LoadError(msg)

    if sa.attach_role_arn:
        if sa.attach_policy_arns:
            msg = f"{sa.name_string}: attachRoleARN cannot be combined with attachPolicyARNs"
            raise irsactl.LoadError(msg)

        if sa.role_name:
            msg = f"{sa.name_string}: roleName cannot be set when attachRoleARN is used"
            raise irsactl.LoadError(msg)

        if sa.role_only:
            msg = f"{sa.name_string}: roleOnly with attachRoleARN would create nothing"
            raise irsactl.LoadError(msg)

        if not irsactl.aws_iam.is_valid_role_arn(sa.attach_role_arn):
            msg = f"{sa.name_string}: invalid IAM role ARN {sa.attach_role_arn!r}"
            raise irsactl.LoadError(msg)
    elif not sa.attach_policy_arns:
        msg = f"{sa.name_string}: at least one of attachPolicyARNs or attachRoleARN must be set"
        raise irsactl.LoadError(msg)

    for arn in sa.attach_policy_arns:
        if not irsactl.aws_iam.is_valid_arn(arn):
            msg = f"{sa.name_string}: invalid policy ARN {arn!r}"
            raise irsactl.LoadError(msg)

    if sa.role_name and len(sa.role_name) > irsactl.MAX_ROLE_NAME_LENGTH:
        msg = f"{sa.name_string}: roleName {sa.role_name!r} is longer than {irsactl.MAX_ROLE_NAME_LENGTH} characters"
        raise irsactl.LoadError(msg)


def validate_service_accounts(service_accounts: collections.abc.Sequence[irsactl.ServiceAccountSpec]) -> None:
    seen: set[irsactl.SERVICE_ACCOUNT_KEY] = set()
    for sa in service_accounts:
        validate_service_account(sa)

        if sa.key in seen:
            msg = f"iamserviceaccount {sa.name_string!r} is declared more than once"
            raise irsactl.LoadError(msg)

        seen.add(sa.key)


def default_region(profile: str | None) -> str:
    try:
        return irsactl.aws_session(profile=profile).region_name or ""
    except botocore.exceptions.ProfileNotFound as e:
        raise irsactl.LoadError(str(e)) from e


def _merge_identity(flags: CreateIAMServiceAccountFlags, metadata: irsactl.ClusterIdentity) -> irsactl.ClusterIdentity:
    for flag, flag_value, file_value in (
        ("--cluster", flags.cluster, metadata.name),
        ("--region", flags.region, metadata.region),
    ):
        if flag_value and file_value and flag_value != file_value:
            msg = f"{flag}={flag_value!r} conflicts with {file_value!r} in the config file"
            raise irsactl.LoadError(msg)

    name = metadata.name or flags.cluster or ""
    region = metadata.region or flags.region or default_region(flags.profile)

    if name == "":
        msg = "--cluster must be set"
        raise irsactl.LoadError(msg)

    if region == "":
        msg = "--region must be set (or configured for the AWS profile in use)"
        raise irsactl.LoadError(msg)

    return irsactl.ClusterIdentity(name=name, region=region)


def load_create_iamserviceaccount_config(
    flags: CreateIAMServiceAccountFlags,
    sa_filter: irsactl.filter.IAMServiceAccountFilter | None = None,
) -> irsactl.ClusterConfig:
    """
    Build the validated cluster config for `create iamserviceaccount`.

    Without a config file a single service account is taken from the flags;
    with one, service account flags are rejected and the include/exclude
    filter narrows the file's service accounts.
    """
    sa_filter = sa_filter or irsactl.filter.IAMServiceAccountFilter()

    if flags.config_file is None:
        if not sa_filter.empty:
            msg = "--include and --exclude can only be used with --config-file"
            raise irsactl.LoadError(msg)

        if not flags.name:
            msg = "--name must be set"
            raise irsactl.LoadError(msg)

        cfg = irsactl.ClusterConfig(
            metadata=_merge_identity(flags, irsactl.ClusterIdentity(name="", region="")),
            service_accounts=(
                irsactl.ServiceAccountSpec(
                    name=flags.name,
                    namespace=flags.namespace or irsactl.DEFAULT_NAMESPACE,
                    attach_policy_arns=tuple(flags.attach_policy_arns),
                    attach_role_arn=flags.attach_role_arn or None,
                    role_name=flags.role_name or None,
                    role_only=flags.role_only,
                    tags=dict(flags.tags),
                ),
            ),
        )
    else:
        if flags.service_account_flags_set():
            msg = f"cannot use {', '.join(flags.service_account_flags_set())} when --config-file/-f is set"
            raise irsactl.LoadError(msg)

        cfg = load_cluster_config_dict(read_config_file(flags.config_file))
        cfg = dataclasses.replace(cfg, metadata=_merge_identity(flags, cfg.metadata))

        if flags.role_only:
            cfg = cfg.with_service_accounts(dataclasses.replace(sa, role_only=True) for sa in cfg.service_accounts)

    if not cfg.with_oidc:
        msg = "iam.withOIDC must be enabled to create iamserviceaccounts"
        raise irsactl.LoadError(msg)

    if flags.oidc_thumbprint:
        cfg = dataclasses.replace(cfg, oidc_thumbprint=flags.oidc_thumbprint)

    validate_service_accounts(cfg.service_accounts)

    return cfg.with_service_accounts(sa_filter.filter_matching(cfg.service_accounts))
