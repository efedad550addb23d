"""Run the file-sync agent inside the migrator pod."""

import re
from dataclasses import dataclass

from kubernetes.stream import stream

from .errors import SyncFailed
from .provisioning import api_call
from .templates import SOURCE_MOUNT, TARGET_MOUNT

# rsync reports per-file problems on stdout/stderr with these prefixes
ERROR_PATTERN = re.compile(r"^(rsync(: | error)|error[: ])", re.IGNORECASE | re.MULTILINE)


@dataclass
class SyncResult:
    pod: str
    exit_code: int
    output: str


def pod_exec(core_v1, namespace, pod, command):
    """Exec ``command`` in ``pod``, echo its output as it arrives and return (exit code, output)."""
    with api_call(f"exec in pod '{pod}'"):
        resp = stream(
            core_v1.connect_get_namespaced_pod_exec,
            pod,
            namespace,
            command=command,
            stderr=True,
            stdin=False,
            stdout=True,
            tty=False,
            _preload_content=False,
        )
    chunks = []
    while resp.is_open():
        resp.update(timeout=1)
        if resp.peek_stdout():
            out = resp.read_stdout()
            chunks.append(out)
            print(out, end="")
        if resp.peek_stderr():
            err = resp.read_stderr()
            chunks.append(err)
            print(err, end="")
    resp.close()
    code = resp.returncode
    return (code if code is not None else 1), "".join(chunks)


class SyncInvoker:
    def __init__(self, provisioning, command, flags=(), exec_fn=None):
        self.provisioning = provisioning
        self.command = list(command)
        self.flags = list(flags)
        self.exec_fn = exec_fn or (
            lambda pod, cmd: pod_exec(provisioning.core_v1, provisioning.namespace, pod, cmd)
        )

    def build_command(self, source, destination):
        # trailing slashes copy directory contents rather than the directory itself
        return self.command + self.flags + [source.rstrip("/") + "/", destination.rstrip("/") + "/"]

    def sync(self, workload, source=SOURCE_MOUNT, destination=TARGET_MOUNT):
        pod = self.provisioning.ready_pod(workload)
        if not pod:
            raise SyncFailed(f"no ready pod for '{workload}' to run the copy in")

        cmd = self.build_command(source, destination)
        print(f"[~] Syncing {source} -> {destination} in pod '{pod}': {' '.join(cmd)}")
        exit_code, output = self.exec_fn(pod, cmd)

        if exit_code != 0:
            raise SyncFailed(f"copy agent exited with status {exit_code}", exit_code, output)
        match = ERROR_PATTERN.search(output)
        if match:
            line = output[match.start():].splitlines()[0]
            raise SyncFailed(f"copy agent reported an error: {line}", exit_code, output)

        print(f"[✓] Sync {source} -> {destination} finished")
        return SyncResult(pod=pod, exit_code=exit_code, output=output)
