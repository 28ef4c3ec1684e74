from __future__ import annotations

import datetime
import hashlib
import json
import typing

import pulumi
import pulumi_aws as aws
import pulumi_kubernetes as kubernetes

import irsactl
import irsactl.aws_iam


def custom_timeouts(timeout: datetime.timedelta | None) -> pulumi.CustomTimeouts | None:
    if timeout is None:
        return None

    duration = f"{max(int(timeout.total_seconds()), 1)}s"
    return pulumi.CustomTimeouts(create=duration, update=duration, delete=duration)


class IAMServiceAccount(pulumi.ComponentResource):
    resource_name: str
    cluster_name: str
    service_account: irsactl.ServiceAccountSpec
    account_id: str
    oidc_url_tail: str
    partition: str
    override_existing: bool
    timeout: datetime.timedelta | None

    role: aws.iam.Role | None
    role_arn: pulumi.Input[str]
    policy_attachments: list[aws.iam.RolePolicyAttachment]
    k8s_service_account: kubernetes.core.v1.ServiceAccount | None

    def __init__(
        self,
        cluster_name: str,
        service_account: irsactl.ServiceAccountSpec,
        account_id: str,
        oidc_url_tail: str,
        override_existing: bool = False,  # noqa: FBT001, FBT002
        timeout: datetime.timedelta | None = None,
        partition: str = "aws",
        *args,
        **kwargs,
    ):
        self.resource_name = f"{cluster_name}-{service_account.namespace}-{service_account.name}"

        super().__init__(
            f"irsactl:{self.__class__.__name__}",
            self.resource_name,
            *args,
            **kwargs,
        )

        self.cluster_name = cluster_name
        self.service_account = service_account
        self.account_id = account_id
        self.oidc_url_tail = oidc_url_tail
        self.override_existing = override_existing
        self.timeout = timeout
        self.partition = partition

        self.role = None
        self.policy_attachments = []
        self.k8s_service_account = None

        self._define_role()
        self._define_policy_attachments()

        if self.service_account.role_only:
            pulumi.log.info(f"{service_account.name_string}: role only, skipping Kubernetes service account")
        else:
            self._define_service_account()

        self.register_outputs({"role_arn": self.role_arn})

    @property
    def role_name(self) -> str:
        return self.service_account.role_name or irsactl.aws_iam.irsa_role_name(
            self.cluster_name,
            self.service_account.namespace,
            self.service_account.name,
        )

    def _define_role(self) -> None:
        if self.service_account.attach_role_arn:
            self.role_arn = self.service_account.attach_role_arn
            return

        self.role = aws.iam.Role(
            f"{self.resource_name}-role",
            name=self.role_name,
            assume_role_policy=json.dumps(
                irsactl.aws_iam.build_irsa_role_assume_role_policy(
                    namespace=self.service_account.namespace,
                    account_id=self.account_id,
                    oidc_url_tails=[self.oidc_url_tail],
                    service_accounts=[self.service_account.name],
                    partition=self.partition,
                )
            ),
            tags=irsactl.aws_iam.role_tags(self.cluster_name, self.service_account),
            opts=pulumi.ResourceOptions(parent=self, custom_timeouts=custom_timeouts(self.timeout)),
        )
        self.role_arn = self.role.arn

    def _define_policy_attachments(self) -> None:
        if self.role is None:
            return

        for policy_arn in self.service_account.attach_policy_arns:
            # keyed by ARN so reordering the policy list does not replace attachments
            digest = hashlib.sha256(policy_arn.encode(), usedforsecurity=False).hexdigest()[:10]
            self.policy_attachments.append(
                aws.iam.RolePolicyAttachment(
                    f"{self.resource_name}-{digest}",
                    policy_arn=policy_arn,
                    role=self.role.name,
                    opts=pulumi.ResourceOptions(parent=self.role, custom_timeouts=custom_timeouts(self.timeout)),
                )
            )

    def _define_service_account(self) -> None:
        annotations: dict[str, pulumi.Input[str]] = {irsactl.ROLE_ARN_ANNOTATION: self.role_arn}
        if self.override_existing:
            annotations[irsactl.PATCH_FORCE_ANNOTATION] = "true"

        self.k8s_service_account = kubernetes.core.v1.ServiceAccount(
            f"{self.resource_name}-sa",
            kubernetes.core.v1.ServiceAccountInitArgs(
                metadata=kubernetes.meta.v1.ObjectMetaArgs(
                    name=self.service_account.name,
                    namespace=self.service_account.namespace,
                    annotations=annotations,
                    labels={irsactl.Labels.MANAGED_BY: irsactl.PULUMI_PROJECT},
                ),
            ),
            opts=pulumi.ResourceOptions(
                parent=self,
                depends_on=self.policy_attachments,
                custom_timeouts=custom_timeouts(self.timeout),
            ),
        )
