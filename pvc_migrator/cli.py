import argparse
import sys

from .confirm import TerminalConfirmation
from .errors import ControlPlaneError, NotFound, PvcMigratorError, SettingsError, ValidationError
from .models import DEFAULT_MIGRATOR, MigrationRequest, RunStatus
from .orchestrator import MigrationOrchestrator, resolve_step
from .provisioning import ProvisioningClient
from .settings import BUILD_ENV, ENVIRONMENTS, init_settings, load_settings
from .sync import SyncInvoker
from .templates import BuildParams, render_build, to_yaml
from .waiter import ConvergenceWaiter


# -----------------------------------------------------------------------------
# Parse CLI
# -----------------------------------------------------------------------------
def build_parser():
    parser = argparse.ArgumentParser(
        prog="pvc-migrator",
        description="Move a PVC to a new storage class or size while keeping its name.",
        epilog="""
Examples:
  pvc-migrator init abc123 --git-ref master
  pvc-migrator build
  pvc-migrator migrate app app-data fast-ssd 5Gi --env dev
  pvc-migrator migrate app app-data fast-ssd 5Gi --env dev --resume-from OriginalDeleted --host-replicas 2
  pvc-migrator scale-down app --env test
  pvc-migrator clean --env dev
""",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--settings", help="Settings file (default: .pvc-migrator.yaml or $PVC_MIGRATOR_SETTINGS)")
    parser.add_argument("--kube-context", help="kubeconfig context to use")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Write local settings for a project namespace prefix")
    p.add_argument("namespace", help="Project namespace prefix; environments are <namespace>-<env>")
    p.add_argument("--git-ref", help="Branch or tag of the migrator image source")
    p.add_argument("--git-url", help="Repository containing the migrator image source")
    p.add_argument("--default-env", choices=ENVIRONMENTS, help="Environment used when --env is omitted")

    p = sub.add_parser("build", help=f"Create the migrator ImageStream and BuildConfig in the {BUILD_ENV} namespace")
    p.add_argument("--dry-run", action="store_true", help="Print the manifests instead of applying them")

    p = sub.add_parser("migrate", help="Migrate a PVC to a new storage class/size")
    p.add_argument("host", help="Deployment or StatefulSet that mounts the PVC")
    p.add_argument("volume", help="PVC to migrate; its name is preserved")
    p.add_argument("volume_class", help="Target StorageClass")
    p.add_argument("volume_size", help="Target size, e.g. 5Gi")
    p.add_argument("migrator", nargs="?", default=DEFAULT_MIGRATOR, help=f"Migrator Deployment name (default: {DEFAULT_MIGRATOR})")
    p.add_argument("--env", required=True, choices=ENVIRONMENTS, help="Target environment (required)")
    p.add_argument("--resume-from", default="1", help="Step number or name to resume at after an abort")
    p.add_argument("--host-replicas", type=int, help="Original host replica count when resuming")
    p.add_argument("--timeout", type=int, help="Seconds to wait for each convergence check")

    for name, verb in (("scale-up", "Scale workloads up"), ("scale-down", "Scale workloads to 0")):
        p = sub.add_parser(name, help=verb)
        p.add_argument("names", nargs="+", help="Deployments or StatefulSets to scale")
        p.add_argument("--env", choices=ENVIRONMENTS, help="Environment (default: from settings)")
        if name == "scale-up":
            p.add_argument("--replicas", type=int, default=1, help="Replica count (default: 1)")

    p = sub.add_parser("clean", help="Remove the migrator Deployment")
    p.add_argument("migrator", nargs="?", default=DEFAULT_MIGRATOR, help=f"Migrator Deployment name (default: {DEFAULT_MIGRATOR})")
    p.add_argument("--env", required=True, choices=ENVIRONMENTS, help="Target environment (required)")
    return parser


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------
def cmd_init(args):
    init_settings(args.namespace, git_ref=args.git_ref, git_repo_url=args.git_url,
                  default_env=args.default_env, path=args.settings)
    return 0


def cmd_build(args):
    settings = load_settings(args.settings)
    manifests = render_build(BuildParams(
        name=settings.image_name,
        git_repo_url=settings.git_repo_url,
        git_ref=settings.git_ref,
        source_context_dir=settings.source_context_dir,
    ))
    if args.dry_run:
        print(f"[DRY-RUN] Would apply to namespace '{settings.namespace_for(BUILD_ENV)}':")
        print(to_yaml(*manifests), end="")
        return 0
    provisioning = ProvisioningClient.from_kubeconfig(settings.namespace_for(BUILD_ENV), args.kube_context)
    for manifest in manifests:
        provisioning.apply_custom_object(manifest)
    print(f"[✓] Build configured; image will be pushed to '{settings.migrator_image}'")
    return 0


def cmd_migrate(args):
    settings = load_settings(args.settings)
    request = MigrationRequest(
        host_workload=args.host,
        volume_name=args.volume,
        new_volume_class=args.volume_class,
        new_volume_size=args.volume_size,
        migrator_workload=args.migrator,
    ).validate()
    resume_from = resolve_step(args.resume_from)

    namespace = settings.namespace_for(args.env)
    provisioning = ProvisioningClient.from_kubeconfig(namespace, args.kube_context)
    orchestrator = MigrationOrchestrator(
        provisioning=provisioning,
        waiter=ConvergenceWaiter(provisioning, timeout=args.timeout or settings.wait_timeout,
                                 interval=settings.poll_interval),
        sync=SyncInvoker(provisioning, settings.sync_command, settings.sync_flags),
        confirmation=TerminalConfirmation(),
        image=settings.migrator_image,
    )
    print(f"[=] Namespace '{namespace}'")
    state = orchestrator.run(request, resume_from=resume_from, host_replicas=args.host_replicas)
    if state.status != RunStatus.ABORTED:
        return 0

    resume = [
        "pvc-migrator", "migrate", request.host_workload, request.volume_name,
        request.new_volume_class, request.new_volume_size, request.migrator_workload,
        "--env", args.env, "--resume-from", str(state.completed + 1),
    ]
    if state.host_replicas is not None:
        resume += ["--host-replicas", str(state.host_replicas)]
    print("[!] Fix the cause, then resume with:")
    print(f"    {' '.join(resume)}")
    return 1


def cmd_scale(args):
    settings = load_settings(args.settings)
    replicas = args.replicas if args.command == "scale-up" else 0
    namespace = settings.namespace_for(args.env or settings.default_env)
    if args.env:
        print(f"[=] Namespace '{namespace}'")
    else:
        print(f"[=] Namespace '{namespace}' (default environment '{settings.default_env}' from settings)")
    provisioning = ProvisioningClient.from_kubeconfig(namespace, args.kube_context)
    waiter = ConvergenceWaiter(provisioning, timeout=settings.wait_timeout, interval=settings.poll_interval)
    for name in args.names:
        provisioning.scale_workload(name, replicas)
    for name in args.names:
        if replicas:
            waiter.workload_ready(name, replicas)
        else:
            waiter.pods_terminated(name)
    return 0


def cmd_clean(args):
    settings = load_settings(args.settings)
    provisioning = ProvisioningClient.from_kubeconfig(settings.namespace_for(args.env), args.kube_context)
    try:
        provisioning.delete_workload(args.migrator)
    except NotFound:
        print(f"[!] No migrator '{args.migrator}' found in '{provisioning.namespace}'. Nothing to do.")
    return 0


COMMANDS = {
    "init": cmd_init,
    "build": cmd_build,
    "migrate": cmd_migrate,
    "scale-up": cmd_scale,
    "scale-down": cmd_scale,
    "clean": cmd_clean,
}


# -----------------------------------------------------------------------------
# Main
# -----------------------------------------------------------------------------
def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.command](args)
    except (ValidationError, SettingsError) as e:
        print(f"[!] {e}")
        return 2
    except ControlPlaneError as e:
        print(f"[!] Cluster rejected the request: {e}")
        return 1
    except PvcMigratorError as e:
        print(f"[!] {e}")
        return 1
    except KeyboardInterrupt:
        print("\n[!] Interrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
