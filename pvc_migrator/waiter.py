"""Blocking, bounded polling for cluster convergence."""

import time

from .errors import ConvergenceTimeout


class ConvergenceWaiter:
    def __init__(self, provisioning, timeout=600, interval=2, clock=time.monotonic, sleep=time.sleep):
        self.provisioning = provisioning
        self.timeout = timeout
        self.interval = interval
        self.clock = clock
        self.sleep = sleep

    def wait_for(self, predicate, description):
        """Poll ``predicate`` until it is true.

        Raises ConvergenceTimeout once ``timeout`` seconds have elapsed
        without the predicate holding. Ctrl-C propagates as
        KeyboardInterrupt so the caller can abort cleanly.
        """
        print(f"[~] Waiting for {description}...")
        deadline = self.clock() + self.timeout
        while True:
            if predicate():
                print(f"[✓] {description}")
                return
            if self.clock() >= deadline:
                raise ConvergenceTimeout(description, self.timeout)
            self.sleep(self.interval)

    # -------------------------------------------------------------------------
    # Named cluster states
    # -------------------------------------------------------------------------
    def pods_terminated(self, workload):
        self.wait_for(
            lambda: self.provisioning.count_pods(workload) == 0,
            f"all pods of '{workload}' to terminate",
        )

    def workload_ready(self, workload, replicas):
        self.wait_for(
            lambda: self.provisioning.ready_replicas(workload) >= replicas,
            f"'{workload}' to report {replicas} ready replica(s)",
        )

    def volume_bound(self, name):
        self.wait_for(
            lambda: self.provisioning.volume_phase(name) == "Bound",
            f"PVC '{name}' to be Bound",
        )

    def volume_deleted(self, name):
        self.wait_for(
            lambda: self.provisioning.volume_phase(name) is None,
            f"PVC '{name}' to be deleted",
        )
