"""The migration state machine.

A run walks twelve fixed steps. Each step checks its precondition, asks
for confirmation when destructive, performs one mutation and waits for the
cluster to converge before the next step starts. Any failure stops the run
where it is; nothing is retried or rolled back.
"""

from .errors import NotFound, OperatorDeclined, PreconditionFailed, PvcMigratorError, ValidationError
from .models import Backing, MigrationStep, RunState, RunStatus, ScaleState
from .provisioning import ORIGINAL_REPLICAS_ANNOTATION
from .templates import MigratorParams

STEP_NAMES = (
    "Start",
    "HostScaledDown",
    "TempVolumeCreated",
    "MigratorDeployed",
    "CopiedToTemp",
    "MigratorScaledDown",
    "OriginalDeleted",
    "NewVolumeCreated",
    "MigratorScaledUp2",
    "CopiedToNew",
    "MigratorScaledDown2",
    "HostScaledUp",
    "Complete",
)
COPY_TO_TEMP = 4
DELETE_ORIGINAL = 6
LAST_STEP = len(STEP_NAMES) - 1


def resolve_step(value):
    """Accept a step number (1-12) or a state name such as ``OriginalDeleted``."""
    if isinstance(value, int) or str(value).isdigit():
        number = int(value)
    else:
        lowered = [n.lower() for n in STEP_NAMES]
        if str(value).lower() not in lowered:
            raise ValidationError(f"unknown step '{value}' (expected 1-{LAST_STEP} or one of: {', '.join(STEP_NAMES[1:])})")
        number = lowered.index(str(value).lower())
    if not 1 <= number <= LAST_STEP:
        raise ValidationError(f"step must be between 1 and {LAST_STEP}, got {number}")
    return number


def record_step(state, number):
    """Apply the bookkeeping effect of step ``number`` to ``state``."""
    request = state.request
    if number == 1:
        state.scale["host"] = ScaleState.DOWN
    elif number == 2:
        state.bindings[request.temp_volume_name] = Backing.TEMP
    elif number in (3, 8):
        state.scale["migrator"] = ScaleState.UP
    elif number in (5, 10):
        state.scale["migrator"] = ScaleState.DOWN
    elif number == 6:
        state.bindings.pop(request.volume_name, None)
    elif number == 7:
        state.bindings[request.volume_name] = Backing.NEW
    elif number == 11:
        state.scale["host"] = ScaleState.UP
    elif number == 12:
        state.bindings.pop(request.temp_volume_name, None)
    state.completed = number
    return state


class MigrationOrchestrator:
    def __init__(self, provisioning, waiter, sync, confirmation, image):
        self.provisioning = provisioning
        self.waiter = waiter
        self.sync = sync
        self.confirmation = confirmation
        self.image = image

    def steps(self):
        return [
            MigrationStep(1, STEP_NAMES[1], "Scale host workload down",
                          self.scale_down_host, self.require_host,
                          lambda s: self.waiter.pods_terminated(s.request.host_workload)),
            MigrationStep(2, STEP_NAMES[2], "Create temporary PVC",
                          self.create_temp_volume, self.require_host_stopped,
                          lambda s: self.waiter.volume_bound(s.request.temp_volume_name)),
            MigrationStep(3, STEP_NAMES[3], "Deploy migrator (original -> temporary)",
                          self.deploy_migrator_to_temp, self.require_temp_bound_and_migrator_idle,
                          lambda s: self.waiter.workload_ready(s.request.migrator_workload, 1)),
            MigrationStep(4, STEP_NAMES[4], "Copy data to temporary PVC",
                          self.copy, self.require_migrator_ready, self.review_copy),
            MigrationStep(5, STEP_NAMES[5], "Scale migrator down",
                          self.scale_down_migrator, None,
                          lambda s: self.waiter.pods_terminated(s.request.migrator_workload)),
            MigrationStep(6, STEP_NAMES[6], "Delete original PVC",
                          self.delete_original, self.require_safe_to_delete,
                          lambda s: self.waiter.volume_deleted(s.request.volume_name),
                          destructive=True),
            MigrationStep(7, STEP_NAMES[7], "Recreate PVC with new class and size",
                          self.create_new_volume, self.require_original_absent,
                          lambda s: self.waiter.volume_bound(s.request.volume_name)),
            MigrationStep(8, STEP_NAMES[8], "Deploy migrator (temporary -> new)",
                          self.deploy_migrator_to_new, self.require_new_bound_and_migrator_idle,
                          lambda s: self.waiter.workload_ready(s.request.migrator_workload, 1)),
            MigrationStep(9, STEP_NAMES[9], "Copy data to new PVC",
                          self.copy, self.require_migrator_ready, self.review_copy),
            MigrationStep(10, STEP_NAMES[10], "Scale migrator down",
                          self.scale_down_migrator, None,
                          lambda s: self.waiter.pods_terminated(s.request.migrator_workload)),
            MigrationStep(11, STEP_NAMES[11], "Scale host workload back up",
                          self.scale_up_host, self.require_migrator_stopped,
                          lambda s: self.waiter.workload_ready(s.request.host_workload, s.host_replicas)),
            MigrationStep(12, STEP_NAMES[12], "Delete temporary PVC",
                          self.delete_temp_volume, None,
                          lambda s: self.waiter.volume_deleted(s.request.temp_volume_name)),
        ]

    # -------------------------------------------------------------------------
    # Run loop
    # -------------------------------------------------------------------------
    def run(self, request, resume_from=1, host_replicas=None):
        request.validate()
        start = resolve_step(resume_from)
        state = RunState.start(request, host_replicas)
        for number in range(1, start):
            record_step(state, number)

        steps = self.steps()
        current = steps[start - 1]
        print(f"[=] Migrating PVC '{request.volume_name}' of '{request.host_workload}' "
              f"to SC '{request.new_volume_class}' ({request.new_volume_size})")
        if start > 1:
            print(f"[=] Resuming at step {start} ({current.name}); steps 1-{start - 1} are assumed complete")

        try:
            self.prepare_resume(state, start)
            for step in steps[start - 1:]:
                current = step
                print(f"\n[>] Step {step.number}/{LAST_STEP}: {step.description}")
                if step.precondition:
                    step.precondition(state)
                if step.destructive and not self.confirmation.confirm(
                    f"About to DELETE PVC '{request.volume_name}' and its data. "
                    f"A reviewed copy exists in '{request.temp_volume_name}'. Proceed?"
                ):
                    raise OperatorDeclined(f"deletion of PVC '{request.volume_name}' was not confirmed")
                state = step.action(state)
                if step.postcondition:
                    step.postcondition(state)
                record_step(state, step.number)
        except PvcMigratorError as e:
            return self.abort(state, current, str(e))
        except KeyboardInterrupt:
            print()
            return self.abort(state, current, "interrupted by operator")

        state.status = RunStatus.COMPLETE
        print(f"\n[✓] Migration complete. PVC '{request.volume_name}' now uses SC "
              f"'{request.new_volume_class}' ({request.new_volume_size}).")
        return state

    def prepare_resume(self, state, start):
        request = state.request
        if 1 < start <= 11 and state.host_replicas is None:
            value = self.provisioning.get_annotation(request.host_workload, ORIGINAL_REPLICAS_ANNOTATION)
            if value is None:
                raise PreconditionFailed(
                    f"original replica count of '{request.host_workload}' is unknown; pass --host-replicas"
                )
            state.host_replicas = int(value)
            print(f"[=] Recovered original replica count {state.host_replicas} for '{request.host_workload}'")

        if COPY_TO_TEMP < start <= DELETE_ORIGINAL:
            if not self.confirmation.confirm(
                f"Resuming after the copy step. Confirm that the copy of '{request.volume_name}' to "
                f"'{request.temp_volume_name}' completed and its output was reviewed"
            ):
                raise OperatorDeclined("copy to the temporary PVC was not attested")
            state.copy_acknowledged = True

    def abort(self, state, step, reason):
        state.status = RunStatus.ABORTED
        state.failed_step = step.name
        state.failure = reason
        print(f"\n[!] Migration aborted at step {step.number} ({step.name}): {reason}")
        print(f"[!] Last completed step: {state.completed} ({STEP_NAMES[state.completed]}). "
              "The cluster was left in that state; nothing was rolled back.")
        return state

    # -------------------------------------------------------------------------
    # Preconditions
    # -------------------------------------------------------------------------
    def require_host(self, state):
        # raises NotFound when the host workload does not exist
        self.provisioning.get_replicas(state.request.host_workload)

    def require_host_stopped(self, state):
        host = state.request.host_workload
        if self.provisioning.count_pods(host) != 0:
            raise PreconditionFailed(f"'{host}' still has running pods")

    def require_migrator_stopped(self, state):
        migrator = state.request.migrator_workload
        if self.provisioning.count_pods(migrator) != 0:
            raise PreconditionFailed(f"'{migrator}' still has running pods")

    def require_migrator_idle(self, state):
        # a running migrator would keep serving its old mounts until the rollout replaces it
        migrator = state.request.migrator_workload
        try:
            pods = self.provisioning.count_pods(migrator)
        except NotFound:
            return
        if pods != 0:
            raise PreconditionFailed(
                f"'{migrator}' already has {pods} running pod(s); scale it to 0 or run 'pvc-migrator clean' first"
            )

    def require_temp_bound_and_migrator_idle(self, state):
        self.require_temp_bound(state)
        self.require_migrator_idle(state)

    def require_new_bound_and_migrator_idle(self, state):
        self.require_new_bound(state)
        self.require_migrator_idle(state)

    def _require_bound(self, name):
        phase = self.provisioning.volume_phase(name)
        if phase != "Bound":
            raise PreconditionFailed(f"PVC '{name}' is {phase or 'absent'}, expected Bound")

    def require_temp_bound(self, state):
        self._require_bound(state.request.temp_volume_name)

    def require_new_bound(self, state):
        self._require_bound(state.request.volume_name)

    def require_migrator_ready(self, state):
        migrator = state.request.migrator_workload
        if self.provisioning.ready_replicas(migrator) < 1:
            raise PreconditionFailed(f"'{migrator}' has no ready replica")

    def require_safe_to_delete(self, state):
        if not state.copy_acknowledged:
            raise PreconditionFailed("the copy to the temporary PVC has not been acknowledged")
        self.require_migrator_stopped(state)
        self.require_temp_bound(state)

    def require_original_absent(self, state):
        name = state.request.volume_name
        phase = self.provisioning.volume_phase(name)
        if phase is not None:
            raise PreconditionFailed(f"PVC '{name}' still exists ({phase})")

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------
    def scale_down_host(self, state):
        host = state.request.host_workload
        # an earlier aborted run already scaled the host down; its annotation holds the real count
        recorded = self.provisioning.get_annotation(host, ORIGINAL_REPLICAS_ANNOTATION)
        if state.host_replicas is None:
            if recorded is not None:
                state.host_replicas = int(recorded)
                print(f"[=] Recovered original replica count {state.host_replicas} for '{host}'")
            else:
                state.host_replicas = self.provisioning.get_replicas(host)
        if recorded != str(state.host_replicas):
            self.provisioning.annotate_workload(host, {ORIGINAL_REPLICAS_ANNOTATION: str(state.host_replicas)})
        self.provisioning.scale_workload(host, 0)
        return state

    def create_temp_volume(self, state):
        request = state.request
        self.provisioning.create_volume(request.temp_volume_name, request.new_volume_class,
                                        request.new_volume_size, request.host_workload)
        return state

    def _deploy_migrator(self, state, source, target):
        migrator = state.request.migrator_workload
        self.provisioning.deploy_workload(migrator, MigratorParams(
            image=self.image,
            source_claim=source,
            target_claim=target,
        ))
        self.provisioning.scale_workload(migrator, 1)
        return state

    def deploy_migrator_to_temp(self, state):
        request = state.request
        return self._deploy_migrator(state, request.volume_name, request.temp_volume_name)

    def deploy_migrator_to_new(self, state):
        request = state.request
        return self._deploy_migrator(state, request.temp_volume_name, request.volume_name)

    def copy(self, state):
        self.sync.sync(state.request.migrator_workload)
        return state

    def review_copy(self, state):
        request = state.request
        if state.completed < COPY_TO_TEMP:
            source, target = request.volume_name, request.temp_volume_name
        else:
            source, target = request.temp_volume_name, request.volume_name
        if not self.confirmation.confirm(f"Review the sync output above for '{source}' -> '{target}'. Continue?"):
            raise OperatorDeclined(f"copy '{source}' -> '{target}' was not accepted")
        if state.completed < COPY_TO_TEMP:
            state.copy_acknowledged = True

    def scale_down_migrator(self, state):
        self.provisioning.scale_workload(state.request.migrator_workload, 0)
        return state

    def delete_original(self, state):
        self.provisioning.delete_volume(state.request.volume_name)
        return state

    def create_new_volume(self, state):
        request = state.request
        self.provisioning.create_volume(request.volume_name, request.new_volume_class,
                                        request.new_volume_size, request.host_workload)
        return state

    def scale_up_host(self, state):
        host = state.request.host_workload
        self.provisioning.scale_workload(host, state.host_replicas)
        self.provisioning.annotate_workload(host, {ORIGINAL_REPLICAS_ANNOTATION: None})
        return state

    def delete_temp_volume(self, state):
        self.provisioning.delete_volume(state.request.temp_volume_name)
        return state
