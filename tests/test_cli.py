"""Tests for the operator command surface."""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes import config

from pvc_migrator.cli import build_parser, main
from pvc_migrator.errors import NotFound
from pvc_migrator.models import RunStatus
from pvc_migrator.settings import init_settings


@pytest.fixture
def settings_file(tmp_path):
    path = str(tmp_path / "settings.yaml")
    init_settings("abc123", path=path)
    return path


@pytest.mark.parametrize("argv", [
    ["migrate", "app", "app-data", "fast-ssd", "5Gi"],
    ["clean"],
])
def test_destructive_commands_require_env(argv):
    with pytest.raises(SystemExit):
        build_parser().parse_args(argv)


def test_scale_env_is_optional():
    args = build_parser().parse_args(["scale-down", "app", "db"])

    assert args.env is None
    assert args.names == ["app", "db"]


def test_init_writes_settings(tmp_path):
    path = tmp_path / "s.yaml"

    assert main(["--settings", str(path), "init", "abc123", "--git-ref", "v2"]) == 0
    assert "git_ref: v2" in path.read_text()


def test_build_dry_run_prints_manifests(settings_file, capsys):
    with patch("pvc_migrator.cli.ProvisioningClient") as provisioning_cls:
        assert main(["--settings", settings_file, "build", "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "namespace 'abc123-tools'" in out
    assert "kind: BuildConfig" in out
    provisioning_cls.from_kubeconfig.assert_not_called()


def test_build_applies_to_tools_namespace(settings_file):
    with patch("pvc_migrator.cli.ProvisioningClient") as provisioning_cls:
        assert main(["--settings", settings_file, "build"]) == 0

    provisioning_cls.from_kubeconfig.assert_called_once_with("abc123-tools", None)
    assert provisioning_cls.from_kubeconfig.return_value.apply_custom_object.call_count == 2


def test_migrate_rejects_invalid_request_before_connecting(settings_file, capsys):
    with patch("pvc_migrator.cli.ProvisioningClient") as provisioning_cls:
        code = main(["--settings", settings_file, "migrate", "app", "app-data", "fast-ssd", "lots", "--env", "dev"])

    assert code == 2
    assert "storage quantity" in capsys.readouterr().out
    provisioning_cls.from_kubeconfig.assert_not_called()


def test_migrate_abort_prints_resume_command(settings_file, capsys):
    state = MagicMock(status=RunStatus.ABORTED, completed=5, host_replicas=2)
    with patch("pvc_migrator.cli.ProvisioningClient"), \
            patch("pvc_migrator.cli.MigrationOrchestrator") as orchestrator_cls:
        orchestrator_cls.return_value.run.return_value = state
        code = main(["--settings", settings_file, "migrate", "app", "app-data", "fast-ssd", "5Gi", "--env", "test"])

    assert code == 1
    out = capsys.readouterr().out
    assert ("pvc-migrator migrate app app-data fast-ssd 5Gi pvc-migrator --env test "
            "--resume-from 6 --host-replicas 2") in out


def test_migrate_passes_resume_options(settings_file):
    state = MagicMock(status=RunStatus.COMPLETE)
    with patch("pvc_migrator.cli.ProvisioningClient") as provisioning_cls, \
            patch("pvc_migrator.cli.MigrationOrchestrator") as orchestrator_cls:
        orchestrator_cls.return_value.run.return_value = state
        code = main(["--settings", settings_file, "migrate", "app", "app-data", "fast-ssd", "5Gi", "mover",
                     "--env", "prod", "--resume-from", "NewVolumeCreated", "--host-replicas", "3"])

    assert code == 0
    provisioning_cls.from_kubeconfig.assert_called_once_with("abc123-prod", None)
    request = orchestrator_cls.return_value.run.call_args[0][0]
    assert request.migrator_workload == "mover"
    assert orchestrator_cls.return_value.run.call_args.kwargs == {"resume_from": 7, "host_replicas": 3}


def test_scale_up_uses_default_env_and_waits(settings_file, capsys):
    with patch("pvc_migrator.cli.ProvisioningClient") as provisioning_cls, \
            patch("pvc_migrator.cli.ConvergenceWaiter") as waiter_cls:
        assert main(["--settings", settings_file, "scale-up", "app", "--replicas", "2"]) == 0

    provisioning_cls.from_kubeconfig.assert_called_once_with("abc123-dev", None)
    provisioning_cls.from_kubeconfig.return_value.scale_workload.assert_called_once_with("app", 2)
    waiter_cls.return_value.workload_ready.assert_called_once_with("app", 2)
    assert "[=] Namespace 'abc123-dev' (default environment 'dev' from settings)" in capsys.readouterr().out


def test_scale_down_prints_explicit_namespace(settings_file, capsys):
    with patch("pvc_migrator.cli.ProvisioningClient"), patch("pvc_migrator.cli.ConvergenceWaiter"):
        assert main(["--settings", settings_file, "scale-down", "app", "--env", "prod"]) == 0

    out = capsys.readouterr().out
    assert "[=] Namespace 'abc123-prod'" in out
    assert "default environment" not in out


def test_unreadable_kubeconfig_exits_with_message(settings_file, capsys):
    with patch("pvc_migrator.provisioning.config.load_kube_config",
               side_effect=config.ConfigException("Invalid kube-config file. No configuration found.")):
        assert main(["--settings", settings_file, "clean", "--env", "dev"]) == 2

    out = capsys.readouterr().out
    assert "[!] could not load kubeconfig" in out
    assert "Traceback" not in out


def test_clean_missing_migrator_is_not_an_error(settings_file, capsys):
    with patch("pvc_migrator.cli.ProvisioningClient") as provisioning_cls:
        provisioning_cls.from_kubeconfig.return_value.delete_workload.side_effect = NotFound("gone", 404)
        assert main(["--settings", settings_file, "clean", "--env", "dev"]) == 0

    assert "Nothing to do" in capsys.readouterr().out


def test_missing_settings(tmp_path, capsys):
    assert main(["--settings", str(tmp_path / "none.yaml"), "clean", "--env", "dev"]) == 2
    assert "run 'pvc-migrator init" in capsys.readouterr().out
