from __future__ import annotations

import typing

import click
import pulumi
import pulumi.automation as auto
import pulumi_kubernetes as kubernetes

import irsactl
import irsactl.console
import irsactl.pulumi_resources.iam_service_account

if typing.TYPE_CHECKING:
    import collections.abc
    import datetime

    import irsactl.oidc
    import irsactl.reconcile
    import irsactl.stacks


class IRSAManager:
    """Provisions IAM roles and their Kubernetes service accounts, one Pulumi stack each."""

    cluster_name: str
    stack_manager: irsactl.stacks.StackManager
    oidc: irsactl.oidc.OpenIDConnectManager
    kubeconfig: str
    account_id: str
    partition: str

    def __init__(
        self,
        cluster_name: str,
        stack_manager: irsactl.stacks.StackManager,
        oidc: irsactl.oidc.OpenIDConnectManager,
        kubeconfig: str,
        account_id: str,
        partition: str = "aws",
    ):
        self.cluster_name = cluster_name
        self.stack_manager = stack_manager
        self.oidc = oidc
        self.kubeconfig = kubeconfig
        self.account_id = account_id
        self.partition = partition

    def program(
        self,
        sa: irsactl.ServiceAccountSpec,
        *,
        override_existing: bool = False,
        timeout: datetime.timedelta | None = None,
    ) -> collections.abc.Callable[[], None]:
        def pulumi_program() -> None:
            k8s_provider = kubernetes.Provider(
                f"{self.cluster_name}-k8s",
                kubeconfig=self.kubeconfig,
            )

            iam_service_account = irsactl.pulumi_resources.iam_service_account.IAMServiceAccount(
                cluster_name=self.cluster_name,
                service_account=sa,
                account_id=self.account_id,
                oidc_url_tail=self.oidc.url_tail,
                partition=self.partition,
                override_existing=override_existing,
                timeout=timeout,
                opts=pulumi.ResourceOptions(providers=[k8s_provider]),
            )

            pulumi.export("role_arn", iam_service_account.role_arn)
            pulumi.export("service_account", sa.name_string)

        return pulumi_program

    def create_iam_service_accounts(
        self,
        service_accounts: collections.abc.Sequence[irsactl.ServiceAccountSpec],
        plan: bool,  # noqa: FBT001
        *,
        override_existing: bool = False,
        ctx: irsactl.reconcile.RunContext | None = None,
    ) -> None:
        if len(service_accounts) == 0:
            irsactl.console.info("no iamserviceaccounts to create")
            return

        action = "preview" if plan else "create"
        irsactl.console.info(f"{len(service_accounts)} iamserviceaccount(s) to {action}:")
        irsactl.console.print_steps(
            [
                f"{sa.name_string} (stack {self.stack_manager.stack_name(sa.namespace, sa.name)!r})"
                for sa in service_accounts
            ]
        )

        failures: dict[str, str] = {}
        for sa in service_accounts:
            if ctx is not None:
                ctx.check()

            stack_name = self.stack_manager.stack_name(sa.namespace, sa.name)
            try:
                self.stack_manager.provision(
                    stack_name,
                    self.program(
                        sa,
                        override_existing=override_existing,
                        timeout=ctx.remaining() if ctx is not None else None,
                    ),
                    plan=plan,
                    on_output=lambda line: click.echo(line.rstrip("\n")),
                )
            except auto.CommandError as e:
                failures[sa.name_string] = str(e)
                irsactl.console.error(f"{action} iamserviceaccount {sa.name_string!r} failed: {e}")
                continue

            if not plan:
                irsactl.console.success(f"created iamserviceaccount {sa.name_string!r}")

        if failures:
            msg = f"failed to {action} {len(failures)} of {len(service_accounts)} iamserviceaccount(s): " + ", ".join(
                failures
            )
            raise irsactl.ProvisioningError(msg, failures)

        if plan:
            irsactl.console.warning("no changes were applied, use --approve to create the iamserviceaccount(s) above")
