"""Shared pytest fixtures: an in-memory cluster and scripted operator."""

import pytest

from pvc_migrator.errors import Conflict, NotFound
from pvc_migrator.orchestrator import MigrationOrchestrator
from pvc_migrator.sync import SyncInvoker
from pvc_migrator.waiter import ConvergenceWaiter


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCluster:
    """Stateful stand-in for ProvisioningClient; mutations converge instantly."""

    namespace = "abc123-dev"

    def __init__(self):
        self.volumes = {}
        self.workloads = {}
        self.calls = []
        self.pending = set()
        self.failures = {}
        self.exec_results = []

    # setup helpers
    def add_volume(self, name, storage_class, size, files=()):
        self.volumes[name] = {"class": storage_class, "size": size, "files": set(files), "phase": "Bound"}

    def add_workload(self, name, replicas):
        self.workloads[name] = {"replicas": replicas, "annotations": {}, "params": None}

    def fail_next(self, call, name, error):
        self.failures[(call, name)] = error

    def _record(self, call, *args):
        self.calls.append((call,) + args)
        error = self.failures.pop((call, args[0]), None)
        if error:
            raise error

    def _workload(self, name):
        if name not in self.workloads:
            raise NotFound(f"no workload '{name}'", 404)
        return self.workloads[name]

    # volumes
    def create_volume(self, name, storage_class, size, owner):
        self._record("create_volume", name, storage_class, size, owner)
        if name in self.volumes:
            raise Conflict(f"PVC '{name}' already exists", 409)
        phase = "Pending" if name in self.pending else "Bound"
        self.volumes[name] = {"class": storage_class, "size": size, "files": set(), "phase": phase}

    def delete_volume(self, name):
        self._record("delete_volume", name)
        if name not in self.volumes:
            raise NotFound(f"PVC '{name}' not found", 404)
        del self.volumes[name]

    def volume_phase(self, name):
        volume = self.volumes.get(name)
        return volume["phase"] if volume else None

    # workloads
    def get_replicas(self, name):
        return self._workload(name)["replicas"]

    def ready_replicas(self, name):
        return self._workload(name)["replicas"]

    def count_pods(self, name):
        return self._workload(name)["replicas"]

    def ready_pod(self, name):
        return f"{name}-pod" if self._workload(name)["replicas"] else None

    def scale_workload(self, name, replicas):
        self._record("scale_workload", name, replicas)
        self._workload(name)["replicas"] = replicas

    def deploy_workload(self, name, params):
        self._record("deploy_workload", name, params.source_claim, params.target_claim)
        self.workloads.setdefault(name, {"replicas": 0, "annotations": {}, "params": None})
        self.workloads[name]["params"] = params

    def annotate_workload(self, name, annotations):
        self._record("annotate_workload", name, annotations)
        current = self._workload(name)["annotations"]
        for key, value in annotations.items():
            if value is None:
                current.pop(key, None)
            else:
                current[key] = value

    def get_annotation(self, name, key):
        return self._workload(name)["annotations"].get(key)

    # copy agent: rsync -a --delete semantics between the migrator's two claims
    def exec(self, pod, command):
        self.calls.append(("exec", pod, tuple(command)))
        if self.exec_results:
            return self.exec_results.pop(0)
        params = self.workloads[pod[: -len("-pod")]]["params"]
        source = self.volumes[params.source_claim]["files"]
        self.volumes[params.target_claim]["files"] = set(source)
        return 0, f"sent {len(source)} files\n"


class ScriptedConfirmation:
    """Answers every prompt with ``default`` unless a ``decline`` substring matches."""

    def __init__(self, default=True, decline=None, interrupt=None):
        self.default = default
        self.decline = decline
        self.interrupt = interrupt
        self.prompts = []

    def confirm(self, prompt):
        self.prompts.append(prompt)
        if self.interrupt and self.interrupt in prompt:
            raise KeyboardInterrupt
        if self.decline and self.decline in prompt:
            return False
        return self.default


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cluster():
    cluster = FakeCluster()
    cluster.add_workload("app", 2)
    cluster.add_volume("app-data", "slow-hdd", "1Gi", {"a.txt", "b.txt"})
    return cluster


@pytest.fixture
def confirmation():
    return ScriptedConfirmation()


@pytest.fixture
def make_orchestrator(cluster, clock):
    def factory(confirmation=None, timeout=30):
        return MigrationOrchestrator(
            provisioning=cluster,
            waiter=ConvergenceWaiter(cluster, timeout=timeout, interval=2, clock=clock, sleep=clock.sleep),
            sync=SyncInvoker(cluster, ["rsync", "-a", "--delete"], exec_fn=cluster.exec),
            confirmation=confirmation or ScriptedConfirmation(),
            image="registry/abc123-tools/pvc-migrator:latest",
        )
    return factory
