from __future__ import annotations

import typing

import kubernetes
import urllib3.exceptions

import irsactl

if typing.TYPE_CHECKING:
    import collections.abc


def new_core_v1_api(kubeconfig: dict[str, typing.Any]) -> kubernetes.client.CoreV1Api:
    try:
        api_client = kubernetes.config.new_client_from_config_dict(kubeconfig)
    except kubernetes.config.ConfigException as e:
        msg = f"building Kubernetes client: {e}"
        raise irsactl.StateQueryError(msg) from e

    return kubernetes.client.CoreV1Api(api_client)


def list_service_account_names(core_api: kubernetes.client.CoreV1Api, namespace: str) -> set[str]:
    """Names of the service accounts in `namespace`; a missing namespace has none."""
    try:
        response = core_api.list_namespaced_service_account(namespace)
    except kubernetes.client.ApiException as e:
        if e.status == 404:  # noqa: PLR2004
            return set()

        msg = f"listing service accounts in namespace {namespace!r}: {e.status} {e.reason}"
        raise irsactl.StateQueryError(msg) from e
    except urllib3.exceptions.HTTPError as e:
        msg = f"listing service accounts in namespace {namespace!r}: {e}"
        raise irsactl.StateQueryError(msg) from e

    return {item.metadata.name for item in response.items}


def existing_service_account_keys(
    core_api: kubernetes.client.CoreV1Api,
    service_accounts: collections.abc.Iterable[irsactl.ServiceAccountSpec],
    check: collections.abc.Callable[[], None] | None = None,
) -> frozenset[irsactl.SERVICE_ACCOUNT_KEY]:
    wanted: dict[str, set[str]] = {}
    for sa in service_accounts:
        wanted.setdefault(sa.namespace, set()).add(sa.name)

    existing: set[irsactl.SERVICE_ACCOUNT_KEY] = set()
    for namespace, names in wanted.items():
        if check is not None:
            check()

        existing |= {(namespace, name) for name in list_service_account_names(core_api, namespace) & names}

    return frozenset(existing)
