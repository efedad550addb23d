"""Local settings written by ``init`` and read by every other command."""

import os
from dataclasses import asdict, dataclass, field, fields
from typing import List

import yaml

from .errors import SettingsError, ValidationError
from .models import DNS_LABEL

SETTINGS_FILE = ".pvc-migrator.yaml"
SETTINGS_ENV = "PVC_MIGRATOR_SETTINGS"

ENVIRONMENTS = ("tools", "dev", "test", "prod")
BUILD_ENV = "tools"


@dataclass
class Settings:
    namespace: str
    git_repo_url: str = "https://github.com/BCDevOps/StorageMigration.git"
    git_ref: str = "master"
    source_context_dir: str = "docker"
    image_name: str = "pvc-migrator"
    image_registry: str = "image-registry.openshift-image-registry.svc:5000"
    default_env: str = "dev"
    wait_timeout: int = 600
    poll_interval: int = 2
    sync_command: List[str] = field(default_factory=lambda: ["rsync", "-a", "--delete"])
    sync_flags: List[str] = field(default_factory=list)

    def namespace_for(self, env):
        if env not in ENVIRONMENTS:
            raise ValidationError(f"unknown environment '{env}' (expected one of: {', '.join(ENVIRONMENTS)})")
        return f"{self.namespace}-{env}"

    @property
    def migrator_image(self):
        return f"{self.image_registry}/{self.namespace_for(BUILD_ENV)}/{self.image_name}:latest"


def settings_path(path=None):
    return path or os.environ.get(SETTINGS_ENV) or SETTINGS_FILE


def init_settings(namespace, git_ref=None, git_repo_url=None, default_env=None, path=None):
    """Write a fresh settings file and return the Settings it holds."""
    if not namespace or not DNS_LABEL.match(namespace):
        raise ValidationError(f"namespace prefix '{namespace}' is not a valid Kubernetes name")
    settings = Settings(namespace=namespace)
    if git_ref:
        settings.git_ref = git_ref
    if git_repo_url:
        settings.git_repo_url = git_repo_url
    if default_env:
        settings.namespace_for(default_env)
        settings.default_env = default_env

    path = settings_path(path)
    with open(path, "w") as f:
        yaml.safe_dump(asdict(settings), f, sort_keys=False)
    print(f"[+] Wrote settings to '{path}' (namespace prefix '{namespace}')")
    return settings


def load_settings(path=None):
    path = settings_path(path)
    if not os.path.exists(path):
        raise SettingsError(f"no settings found at '{path}'; run 'pvc-migrator init <namespace>' first")
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SettingsError(f"could not parse '{path}': {e}") from e

    if not isinstance(data, dict) or not data.get("namespace"):
        raise SettingsError(f"'{path}' does not define a namespace")
    known = {f.name for f in fields(Settings)}
    unknown = sorted(set(data) - known)
    if unknown:
        print(f"[!] Ignoring unknown settings in '{path}': {', '.join(unknown)}")
    return Settings(**{k: v for k, v in data.items() if k in known})
