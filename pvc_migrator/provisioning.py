"""Thin wrapper over the Kubernetes API for volumes and workloads.

Every mutation returns once the API server accepts it; convergence is
observed separately by the waiter. API rejections surface as the typed
errors in :mod:`pvc_migrator.errors`.
"""

from contextlib import contextmanager

import urllib3
from kubernetes import client, config

from .errors import Conflict, NotFound, PermissionDenied, SettingsError, Unavailable
from .templates import VolumeParams, render_migrator, render_volume

ORIGINAL_REPLICAS_ANNOTATION = "pvc-migrator/original-replicas"

# kind -> (read, patch scale, patch, delete)
WORKLOAD_KINDS = (
    ("Deployment", "read_namespaced_deployment", "patch_namespaced_deployment_scale",
     "patch_namespaced_deployment", "delete_namespaced_deployment"),
    ("StatefulSet", "read_namespaced_stateful_set", "patch_namespaced_stateful_set_scale",
     "patch_namespaced_stateful_set", "delete_namespaced_stateful_set"),
)

CUSTOM_PLURALS = {
    "ImageStream": "imagestreams",
    "BuildConfig": "buildconfigs",
}


def translate_api_error(e, what):
    status = getattr(e, "status", None)
    message = f"{what}: {e.reason or 'request failed'} (HTTP {status})"
    if status == 404:
        return NotFound(message, status)
    if status == 409:
        return Conflict(message, status)
    if status in (401, 403):
        return PermissionDenied(message, status)
    return Unavailable(message, status)


@contextmanager
def api_call(what):
    try:
        yield
    except client.exceptions.ApiException as e:
        raise translate_api_error(e, what) from e
    except urllib3.exceptions.HTTPError as e:
        raise Unavailable(f"{what}: {e}") from e


class ProvisioningClient:
    def __init__(self, namespace, core_v1, apps_v1, custom_api=None):
        self.namespace = namespace
        self.core_v1 = core_v1
        self.apps_v1 = apps_v1
        self.custom_api = custom_api

    @classmethod
    def from_kubeconfig(cls, namespace, context=None):
        try:
            config.load_kube_config(context=context)
        except config.ConfigException as e:
            raise SettingsError(f"could not load kubeconfig: {e}") from e
        return cls(namespace, client.CoreV1Api(), client.AppsV1Api(), client.CustomObjectsApi())

    # -------------------------------------------------------------------------
    # Volumes
    # -------------------------------------------------------------------------
    def create_volume(self, name, storage_class, size, owner):
        body = render_volume(VolumeParams(
            name=owner,
            volume_claim_name=name,
            storage_class=storage_class,
            storage_size=size,
        ))
        with api_call(f"create PVC '{name}'"):
            self.core_v1.create_namespaced_persistent_volume_claim(self.namespace, body)
        print(f"[+] Created PVC '{name}' in SC '{storage_class}' ({size})")

    def delete_volume(self, name):
        with api_call(f"delete PVC '{name}'"):
            self.core_v1.delete_namespaced_persistent_volume_claim(name, self.namespace)
        print(f"[x] Deleted PVC '{name}'")

    def volume_phase(self, name):
        """Return the claim's phase, or None when it does not exist."""
        try:
            with api_call(f"read PVC '{name}'"):
                pvc = self.core_v1.read_namespaced_persistent_volume_claim(name, self.namespace)
        except NotFound:
            return None
        if pvc.metadata.deletion_timestamp:
            return "Terminating"
        return pvc.status.phase if pvc.status else None

    # -------------------------------------------------------------------------
    # Workloads
    # -------------------------------------------------------------------------
    def _find_workload(self, name):
        for kind, read, scale, patch, delete in WORKLOAD_KINDS:
            try:
                with api_call(f"read {kind} '{name}'"):
                    workload = getattr(self.apps_v1, read)(name, self.namespace)
            except NotFound:
                continue
            return kind, workload, (scale, patch, delete)
        raise NotFound(f"no Deployment or StatefulSet named '{name}' in namespace '{self.namespace}'", 404)

    def get_replicas(self, name):
        _, workload, _ = self._find_workload(name)
        return workload.spec.replicas or 0

    def ready_replicas(self, name):
        """Ready replicas running the current spec; 0 while a rollout is still pending."""
        kind, workload, _ = self._find_workload(name)
        status = workload.status
        if not status:
            return 0
        if (status.observed_generation or 0) < (workload.metadata.generation or 0):
            return 0
        ready = status.ready_replicas or 0
        if kind == "Deployment":
            # pods from the previous template still count as ready until replaced
            ready = min(ready, status.updated_replicas or 0)
        return ready

    def scale_workload(self, name, replicas):
        kind, _, (scale, _, _) = self._find_workload(name)
        with api_call(f"scale {kind} '{name}'"):
            getattr(self.apps_v1, scale)(
                name=name,
                namespace=self.namespace,
                body={"spec": {"replicas": replicas}},
            )
        print(f"[=] Scaled {kind} '{name}' to replicas={replicas}")

    def deploy_workload(self, name, params):
        """Create the migrator Deployment, or replace its spec if it already exists."""
        body = render_migrator(name, params)
        try:
            with api_call(f"create Deployment '{name}'"):
                self.apps_v1.create_namespaced_deployment(self.namespace, body)
            print(f"[+] Created Deployment '{name}' ({params.source_claim} -> {params.target_claim})")
        except Conflict:
            with api_call(f"replace Deployment '{name}'"):
                self.apps_v1.replace_namespaced_deployment(name, self.namespace, body)
            print(f"[~] Rolled out Deployment '{name}' ({params.source_claim} -> {params.target_claim})")

    def delete_workload(self, name):
        kind, _, (_, _, delete) = self._find_workload(name)
        with api_call(f"delete {kind} '{name}'"):
            getattr(self.apps_v1, delete)(
                name=name,
                namespace=self.namespace,
                body=client.V1DeleteOptions(propagation_policy="Foreground"),
            )
        print(f"[x] Deleted {kind} '{name}'")

    def annotate_workload(self, name, annotations):
        kind, _, (_, patch, _) = self._find_workload(name)
        with api_call(f"annotate {kind} '{name}'"):
            getattr(self.apps_v1, patch)(
                name=name,
                namespace=self.namespace,
                body={"metadata": {"annotations": annotations}},
            )

    def get_annotation(self, name, key):
        _, workload, _ = self._find_workload(name)
        return (workload.metadata.annotations or {}).get(key)

    # -------------------------------------------------------------------------
    # Pods
    # -------------------------------------------------------------------------
    def _pods_for(self, name):
        _, workload, _ = self._find_workload(name)
        labels = workload.spec.selector.match_labels or {}
        selector = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        with api_call(f"list pods for '{name}'"):
            return self.core_v1.list_namespaced_pod(self.namespace, label_selector=selector).items

    def count_pods(self, name):
        """Pods of the workload that still exist and have not finished."""
        return sum(1 for p in self._pods_for(name) if p.status.phase not in ("Succeeded", "Failed"))

    def ready_pod(self, name):
        """Name of a ready, non-terminating pod of the workload, or None."""
        for pod in self._pods_for(name):
            if pod.metadata.deletion_timestamp or pod.status.phase != "Running":
                continue
            for condition in pod.status.conditions or []:
                if condition.type == "Ready" and condition.status == "True":
                    return pod.metadata.name
        return None

    # -------------------------------------------------------------------------
    # OpenShift build objects
    # -------------------------------------------------------------------------
    def apply_custom_object(self, manifest):
        group, version = manifest["apiVersion"].split("/")
        kind = manifest["kind"]
        name = manifest["metadata"]["name"]
        plural = CUSTOM_PLURALS[kind]
        try:
            with api_call(f"create {kind} '{name}'"):
                self.custom_api.create_namespaced_custom_object(
                    group=group, version=version, namespace=self.namespace, plural=plural, body=manifest
                )
            print(f"[+] Created {kind} '{name}'")
        except Conflict:
            with api_call(f"patch {kind} '{name}'"):
                self.custom_api.patch_namespaced_custom_object(
                    group=group, version=version, namespace=self.namespace, plural=plural, name=name, body=manifest
                )
            print(f"[~] Updated {kind} '{name}'")
