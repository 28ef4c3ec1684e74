"""
IAM OIDC identity provider handling for EKS clusters.

Thumbprints are calculated by shelling out to `thumbprint` rather than walking
the certificate chain in Python.

Ref: https://stackoverflow.com/questions/69247498/how-can-i-calculate-the-thumbprint-of-an-openid-connect-server
"""

from __future__ import annotations

import functools
import json
import subprocess
import typing
import urllib.parse
import urllib.request

from botocore.exceptions import BotoCoreError, ClientError

import irsactl
import irsactl.aws_iam
import irsactl.paths

sh = functools.partial(
    subprocess.run,
    check=True,
    capture_output=True,
    text=True,
)


def get_network_location_for_oidc_endpoint(url: str) -> str:
    """Get the 'netloc' portion of a given `url`'s `jwks_uri`"""
    url = url.rstrip("/") + "/.well-known/openid-configuration"

    if not url.startswith(("http:", "https:")):
        msg = "URL must start with 'http:' or 'https:'"
        raise ValueError(msg)

    with urllib.request.urlopen(url, timeout=10) as response:  # noqa: S310
        return urllib.parse.urlparse(json.load(response)["jwks_uri"]).netloc


def get_thumbprint(network_location: str) -> str:
    """
    Calculate the 'thumbprint' ('fingerprint') of the given `network_location`'s root
    certificate.
    """
    exe = irsactl.paths.Paths().bin / "thumbprint"
    cmd = str(exe) if exe.exists() else "thumbprint"

    return sh([cmd, f"{network_location}:443"]).stdout.strip()


class OpenIDConnectManager:
    iam_client: typing.Any
    issuer_url: str
    account_id: str
    partition: str
    thumbprint_override: str | None

    def __init__(
        self,
        iam_client: typing.Any,
        issuer_url: str,
        account_id: str,
        thumbprint_override: str | None = None,
        tags: dict[str, str] | None = None,
        partition: str = "aws",
    ):
        self.iam_client = iam_client
        self.issuer_url = issuer_url
        self.account_id = account_id
        self.partition = partition
        self.thumbprint_override = thumbprint_override
        self.tags = tags or {}

    @property
    def url_tail(self) -> str:
        return irsactl.aws_iam.clean_issuer(self.issuer_url)

    @property
    def provider_arn(self) -> str:
        return irsactl.aws_iam.oidc_provider_arn(self.account_id, self.url_tail, self.partition)

    def provider_exists(self) -> bool:
        if self.issuer_url.strip() == "":
            return False

        try:
            self.iam_client.get_open_id_connect_provider(OpenIDConnectProviderArn=self.provider_arn)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code", "") == "NoSuchEntity":
                return False

            msg = f"checking IAM OIDC provider {self.provider_arn!r}: {e}"
            raise irsactl.StateQueryError(msg) from e
        except BotoCoreError as e:
            msg = f"checking IAM OIDC provider {self.provider_arn!r}: {e}"
            raise irsactl.StateQueryError(msg) from e

        return True

    def thumbprint(self) -> str:
        if self.thumbprint_override:
            return self.thumbprint_override

        try:
            return get_thumbprint(get_network_location_for_oidc_endpoint(self.issuer_url))
        except (OSError, ValueError, KeyError, subprocess.CalledProcessError) as e:
            msg = f"calculating thumbprint for OIDC issuer {self.issuer_url!r}: {e}"
            raise irsactl.ProvisioningError(msg) from e

    def create_provider(self) -> str:
        if self.issuer_url.strip() == "":
            msg = "cluster has no OIDC issuer URL"
            raise irsactl.PreconditionError(msg)

        try:
            response = self.iam_client.create_open_id_connect_provider(
                Url=self.issuer_url,
                ClientIDList=[irsactl.IRSA_AUDIENCE],
                ThumbprintList=[self.thumbprint()],
                Tags=[{"Key": k, "Value": v} for k, v in sorted(self.tags.items())],
            )
        except (BotoCoreError, ClientError) as e:
            msg = f"creating IAM OIDC provider for {self.issuer_url!r}: {e}"
            raise irsactl.ProvisioningError(msg) from e

        return response["OpenIDConnectProviderArn"]
