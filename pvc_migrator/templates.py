"""Manifest rendering from typed parameter sets.

Each parameter dataclass mirrors one template's parameter list and renders
to a plain manifest dict that the kubernetes client accepts as a body.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional

import yaml

ACCESS_MODE = "ReadWriteOnce"
SOURCE_MOUNT = "/source"
TARGET_MOUNT = "/target"

OWNER_LABEL = "app"
MANAGED_BY = {"app.kubernetes.io/managed-by": "pvc-migrator"}


# -----------------------------------------------------------------------------
# PersistentVolumeClaim
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class VolumeParams:
    name: str
    volume_claim_name: str
    storage_class: str
    storage_size: str
    access_mode: str = ACCESS_MODE


def render_volume(params):
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": params.volume_claim_name,
            "labels": {OWNER_LABEL: params.name, **MANAGED_BY},
        },
        "spec": {
            "storageClassName": params.storage_class,
            "accessModes": [params.access_mode],
            "resources": {"requests": {"storage": params.storage_size}},
        },
    }


# -----------------------------------------------------------------------------
# Migrator Deployment
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class MigratorParams:
    """Mount layout for the migrator: ``source_claim`` at /source, ``target_claim`` at /target."""

    image: str
    source_claim: str
    target_claim: str
    replicas: int = 0


def render_migrator(name, params):
    labels = {OWNER_LABEL: name, **MANAGED_BY}
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "labels": labels},
        "spec": {
            "replicas": params.replicas,
            "selector": {"matchLabels": {OWNER_LABEL: name}},
            # both claims are single-writer; never run two migrator pods at once
            "strategy": {"type": "Recreate"},
            "template": {
                "metadata": {"labels": labels},
                "spec": {
                    "containers": [{
                        "name": "migrator",
                        "image": params.image,
                        "command": ["sh", "-c", "trap 'exit 0' TERM; sleep infinity & wait"],
                        "volumeMounts": [
                            {"name": "source", "mountPath": SOURCE_MOUNT},
                            {"name": "target", "mountPath": TARGET_MOUNT},
                        ],
                    }],
                    "volumes": [
                        {"name": "source", "persistentVolumeClaim": {"claimName": params.source_claim}},
                        {"name": "target", "persistentVolumeClaim": {"claimName": params.target_claim}},
                    ],
                },
            },
        },
    }


# -----------------------------------------------------------------------------
# ImageStream + BuildConfig for the migrator image
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class BuildParams:
    name: str = "pvc-migrator"
    git_repo_url: str = "https://github.com/BCDevOps/StorageMigration.git"
    git_ref: Optional[str] = "master"
    source_context_dir: str = "docker"
    labels: Dict[str, str] = field(default_factory=dict)


def render_build(params):
    """Return ``[ImageStream, BuildConfig]`` for a Docker-strategy image build."""
    labels = {OWNER_LABEL: params.name, **params.labels}
    git = {"uri": params.git_repo_url}
    if params.git_ref:
        git["ref"] = params.git_ref
    image_stream = {
        "apiVersion": "image.openshift.io/v1",
        "kind": "ImageStream",
        "metadata": {"name": params.name, "labels": labels},
    }
    build_config = {
        "apiVersion": "build.openshift.io/v1",
        "kind": "BuildConfig",
        "metadata": {"name": params.name, "labels": labels},
        "spec": {
            "triggers": [{"type": "ConfigChange"}],
            "failedBuildsHistoryLimit": 1,
            "successfulBuildsHistoryLimit": 2,
            "runPolicy": "Serial",
            "source": {
                "type": "Git",
                "git": git,
                "contextDir": params.source_context_dir,
            },
            "strategy": {"type": "Docker", "dockerStrategy": {}},
            "output": {"to": {"kind": "ImageStreamTag", "name": f"{params.name}:latest"}},
        },
    }
    return [image_stream, build_config]


def to_yaml(*manifests):
    return yaml.safe_dump_all(list(manifests), sort_keys=False)
