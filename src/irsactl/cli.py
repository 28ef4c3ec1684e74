from __future__ import annotations

import pathlib
import typing

import click

import irsactl
import irsactl.cluster
import irsactl.config
import irsactl.console
import irsactl.filter
import irsactl.junkdrawer
import irsactl.reconcile

if typing.TYPE_CHECKING:
    import datetime


def _parse_tags(_ctx: click.Context, _param: click.Parameter, value: tuple[str, ...]) -> dict[str, str]:
    try:
        return irsactl.junkdrawer.parse_key_value_pairs(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _parse_timeout(_ctx: click.Context, _param: click.Parameter, value: str) -> datetime.timedelta:
    try:
        return irsactl.junkdrawer.parse_duration(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _split_csv(_ctx: click.Context, _param: click.Parameter, value: tuple[str, ...]) -> tuple[str, ...]:
    return irsactl.junkdrawer.split_csv(value)


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase output verbosity (repeatable).")
def main(verbose: int) -> None:
    """Manage IAM roles for Kubernetes service accounts on EKS clusters."""
    irsactl.console.set_verbosity(verbose)


@main.group()
def create() -> None:
    """Create resource(s)."""


@main.group()
def utils() -> None:
    """Various utils."""


@create.command("iamserviceaccount")
@click.option("--cluster", help="EKS cluster name")
@click.option("--name", help="name of the iamserviceaccount to create")
@click.option("--namespace", help="namespace where to create the iamserviceaccount  [default: default]")
@click.option(
    "--attach-policy-arn",
    "attach_policy_arns",
    multiple=True,
    callback=_split_csv,
    help="ARN of the policy where to create the iamserviceaccount (repeatable, comma-separated)",
)
@click.option("--attach-role-arn", help="ARN of the role to attach to the iamserviceaccount")
@click.option("--role-name", help="Set a custom name for the created role")
@click.option(
    "--role-only",
    is_flag=True,
    default=False,
    help="disable service account creation, only the role will be created",
)
@click.option("--oidc-thumbprint", help="OIDC Thumbprint")
@click.option("--tags", multiple=True, callback=_parse_tags, help="Used to tag the IAM role (key=value,key=value)")
@click.option(
    "--override-existing-serviceaccounts",
    is_flag=True,
    default=False,
    help="create IAM roles for existing serviceaccounts and update the serviceaccount",
)
@click.option(
    "--include",
    multiple=True,
    callback=_split_csv,
    help="iamserviceaccounts to include (namespace/name globs, only with --config-file)",
)
@click.option(
    "--exclude",
    multiple=True,
    callback=_split_csv,
    help="iamserviceaccounts to exclude (namespace/name globs, only with --config-file)",
)
@click.option("--approve", is_flag=True, default=False, help="Apply the changes")
@click.option("--region", help="AWS region")
@click.option("--profile", envvar="AWS_PROFILE", help="AWS credentials profile to use")
@click.option(
    "-f",
    "--config-file",
    type=click.Path(exists=True, dir_okay=False, path_type=pathlib.Path),
    help="load configuration from a file",
)
@click.option(
    "--timeout",
    default=irsactl.DEFAULT_TIMEOUT,
    show_default=True,
    callback=_parse_timeout,
    help="maximum waiting time for any long-running operation",
)
def create_iamserviceaccount(
    cluster: str | None,
    name: str | None,
    namespace: str | None,
    attach_policy_arns: tuple[str, ...],
    attach_role_arn: str | None,
    role_name: str | None,
    role_only: bool,  # noqa: FBT001
    oidc_thumbprint: str | None,
    tags: dict[str, str],
    override_existing_serviceaccounts: bool,  # noqa: FBT001
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    approve: bool,  # noqa: FBT001
    region: str | None,
    profile: str | None,
    config_file: pathlib.Path | None,
    timeout: datetime.timedelta,
) -> None:
    """Create an iamserviceaccount - AWS IAM role bound to a Kubernetes service account."""
    flags = irsactl.config.CreateIAMServiceAccountFlags(
        cluster=cluster,
        region=region,
        profile=profile,
        config_file=config_file,
        name=name,
        namespace=namespace,
        attach_policy_arns=attach_policy_arns,
        attach_role_arn=attach_role_arn,
        role_name=role_name,
        role_only=role_only,
        oidc_thumbprint=oidc_thumbprint,
        tags=tags,
        include=include,
        exclude=exclude,
    )

    try:
        cfg = irsactl.config.load_create_iamserviceaccount_config(
            flags,
            irsactl.filter.IAMServiceAccountFilter(include=include, exclude=exclude),
        )

        provider = irsactl.cluster.ClusterProvider(
            irsactl.cluster.ClusterProviderConfig(
                cluster=cfg.metadata,
                profile=profile,
                oidc_thumbprint=cfg.oidc_thumbprint,
            )
        )

        irsactl.reconcile.create_iam_service_accounts(
            cfg,
            irsactl.reconcile.CreateOptions(
                override_existing=override_existing_serviceaccounts,
                role_only=role_only,
                plan=not approve,
            ),
            provider,
            irsactl.reconcile.RunContext(timeout=timeout),
        )
    except irsactl.IRSAError as e:
        raise click.ClickException(str(e)) from e


@utils.command("associate-iam-oidc-provider")
@click.option("--cluster", required=True, help="EKS cluster name")
@click.option("--region", envvar="AWS_REGION", required=True, help="AWS region")
@click.option("--profile", envvar="AWS_PROFILE", help="AWS credentials profile to use")
@click.option("--oidc-thumbprint", help="OIDC Thumbprint")
@click.option("--approve", is_flag=True, default=False, help="Apply the changes")
def associate_iam_oidc_provider(
    cluster: str,
    region: str,
    profile: str | None,
    oidc_thumbprint: str | None,
    approve: bool,  # noqa: FBT001
) -> None:
    """Setup IAM OIDC provider for a cluster to enable IAM roles for pods."""
    identity = irsactl.ClusterIdentity(name=cluster, region=region)
    provider = irsactl.cluster.ClusterProvider(
        irsactl.cluster.ClusterProviderConfig(cluster=identity, profile=profile, oidc_thumbprint=oidc_thumbprint)
    )

    try:
        provider.can_operate()
        oidc = provider.oidc_manager()

        if oidc.provider_exists():
            irsactl.console.info(f"IAM Open ID Connect provider is already associated with cluster {identity}")
            return

        if not approve:
            irsactl.console.info(f"would create IAM Open ID Connect provider for cluster {identity}")
            irsactl.console.warning("no changes were applied, use --approve to create the provider")
            return

        arn = oidc.create_provider()
    except irsactl.IRSAError as e:
        raise click.ClickException(str(e)) from e

    irsactl.console.success(f"created IAM Open ID Connect provider {arn!r} for cluster {identity}")
