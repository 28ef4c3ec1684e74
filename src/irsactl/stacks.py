from __future__ import annotations

import functools
import os
import re
import typing

import pulumi.automation as auto

import irsactl
import irsactl.paths

if typing.TYPE_CHECKING:
    import collections.abc

STACK_NAME_INVALID_CHARS = re.compile("[^A-Za-z0-9_.-]")


class StackManager:
    """
    One Pulumi stack per iamserviceaccount, named `<cluster>_<namespace>_<name>`.

    Namespaces cannot contain underscores, so a stack name maps back to exactly
    one (namespace, name) pair for a given cluster.
    """

    cluster: irsactl.ClusterIdentity
    backend_url: str
    exe_env: dict[str, str]
    secrets_provider: str | None

    def __init__(
        self,
        cluster: irsactl.ClusterIdentity,
        backend_url: str | None = None,
        exe_env: dict[str, str] | None = None,
        secrets_provider: str | None = None,
    ):
        self.cluster = cluster
        self.backend_url = backend_url or irsactl.paths.Paths().state_backend_url()
        self.exe_env = exe_env if exe_env is not None else os.environ.copy()
        self.secrets_provider = secrets_provider or self.exe_env.get("IRSACTL_SECRETS_PROVIDER") or None

    @property
    def env_vars(self) -> dict[str, str]:
        env = dict(self.exe_env)
        env.setdefault("AWS_REGION", self.cluster.region)
        if self.secrets_provider is None:
            env.setdefault("PULUMI_CONFIG_PASSPHRASE", "")

        return env

    @property
    def project_settings(self) -> auto.ProjectSettings:
        return auto.ProjectSettings(
            name=irsactl.PULUMI_PROJECT,
            runtime="python",
            backend=auto.ProjectBackend(url=self.backend_url),
        )

    def _ensure_local_backend(self) -> None:
        if self.backend_url.startswith("file://"):
            irsactl.paths.Paths().state.mkdir(parents=True, exist_ok=True)

    @functools.cached_property
    def workspace(self) -> auto.LocalWorkspace:
        self._ensure_local_backend()

        return auto.LocalWorkspace(
            project_settings=self.project_settings,
            env_vars=self.env_vars,
            secrets_provider=self.secrets_provider,
        )

    def stack_name(self, namespace: str, name: str) -> str:
        return STACK_NAME_INVALID_CHARS.sub("-", f"{self.cluster.name}_{namespace}_{name}")

    @functools.cached_property
    def stack_names(self) -> frozenset[str]:
        try:
            summaries = self.workspace.list_stacks()
        except auto.CommandError as e:
            msg = f"listing iamserviceaccount stacks for cluster {self.cluster}: {e}"
            raise irsactl.StateQueryError(msg) from e

        # fully qualified names look like "organization/project/stack"
        return frozenset(summary.name.split("/")[-1] for summary in summaries)

    def stack_exists(self, namespace: str, name: str) -> bool:
        return self.stack_name(namespace, name) in self.stack_names

    def existing_stack_keys(
        self, service_accounts: collections.abc.Iterable[irsactl.ServiceAccountSpec]
    ) -> frozenset[irsactl.SERVICE_ACCOUNT_KEY]:
        return frozenset(sa.key for sa in service_accounts if self.stack_exists(sa.namespace, sa.name))

    def provision(
        self,
        stack_name: str,
        program: auto.PulumiFn,
        *,
        plan: bool,
        on_output: collections.abc.Callable[[str], typing.Any] | None = None,
    ) -> auto.UpResult | auto.PreviewResult:
        self._ensure_local_backend()

        stack = auto.create_or_select_stack(
            stack_name=stack_name,
            project_name=irsactl.PULUMI_PROJECT,
            program=program,
            opts=auto.LocalWorkspaceOptions(
                project_settings=self.project_settings,
                env_vars=self.env_vars,
                secrets_provider=self.secrets_provider,
            ),
        )
        stack.set_config("aws:region", auto.ConfigValue(value=self.cluster.region))

        if plan:
            return stack.preview(on_output=on_output)

        return stack.up(on_output=on_output)
