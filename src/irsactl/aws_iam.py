from __future__ import annotations

import hashlib
import typing

import irsactl


def build_irsa_role_assume_role_policy(
    namespace: str,
    account_id: str,
    oidc_url_tails: list[str],
    service_accounts: list[str],
    partition: str = "aws",
) -> dict[str, typing.Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Effect": "Allow",
                "Principal": {
                    "Federated": oidc_provider_arn(account_id, oidc_url_tail, partition),
                },
                "Condition": {
                    "StringEquals": {
                        f"{oidc_url_tail}:aud": irsactl.IRSA_AUDIENCE,
                    }
                    | {
                        f"{oidc_url_tail}:sub": [
                            f"system:serviceaccount:{namespace}:{account}" for account in service_accounts
                        ],
                    }
                },
            }
            for oidc_url_tail in oidc_url_tails
        ],
    }


def clean_issuer(url: str) -> str:
    return url.replace("https://", "").rstrip("/")


def partition_for_region(region: str) -> str:
    if region.startswith("cn-"):
        return "aws-cn"

    if region.startswith("us-gov-"):
        return "aws-us-gov"

    return "aws"


def oidc_provider_arn(account_id: str, oidc_url_tail: str, partition: str = "aws") -> str:
    return f"arn:{partition}:iam::{account_id}:oidc-provider/{oidc_url_tail}"


def irsa_role_name(cluster_name: str, namespace: str, name: str) -> str:
    """
    Derive the IAM role name for a service account that has no custom `roleName`.

    Names longer than the IAM limit are truncated and suffixed with a short
    digest of the full name so that distinct service accounts never collide.
    """
    full = f"irsactl-{cluster_name}-{namespace}-{name}"
    if len(full) <= irsactl.MAX_ROLE_NAME_LENGTH:
        return full

    digest = hashlib.sha256(full.encode(), usedforsecurity=False).hexdigest()[:8]
    return f"{full[: irsactl.MAX_ROLE_NAME_LENGTH - len(digest) - 1]}-{digest}"


def role_tags(cluster_name: str, sa: irsactl.ServiceAccountSpec) -> dict[str, str]:
    return dict(sa.tags) | {
        irsactl.TagKeys.IRSACTL_CLUSTER_NAME: cluster_name,
        irsactl.TagKeys.IRSACTL_IAM_SERVICE_ACCOUNT_NAME: sa.name_string,
        irsactl.TagKeys.IRSACTL_MANAGED_BY: irsactl.PULUMI_PROJECT,
    }


def is_valid_arn(arn: str) -> bool:
    return irsactl.ARN_REGEX.match(arn) is not None


def is_valid_role_arn(arn: str) -> bool:
    return irsactl.IAM_ROLE_ARN_REGEX.match(arn) is not None
