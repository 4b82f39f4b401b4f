"""
Default OCI fields containerd applies to every container before any workload or
infrastructure setting is merged in.
"""
from typing import List

from ..MODELS.oci import Linux, LinuxCapabilities, Mount, Process

DEFAULT_UNIX_CAPS = [
    "CAP_CHOWN",
    "CAP_DAC_OVERRIDE",
    "CAP_FSETID",
    "CAP_FOWNER",
    "CAP_MKNOD",
    "CAP_NET_RAW",
    "CAP_SETGID",
    "CAP_SETUID",
    "CAP_SETFCAP",
    "CAP_SETPCAP",
    "CAP_NET_BIND_SERVICE",
    "CAP_SYS_CHROOT",
    "CAP_KILL",
    "CAP_AUDIT_WRITE",
]

DEFAULT_UNIX_CAPS_PRIVILEGED = [
    "CAP_CHOWN",
    "CAP_DAC_OVERRIDE",
    "CAP_DAC_READ_SEARCH",
    "CAP_FOWNER",
    "CAP_FSETID",
    "CAP_KILL",
    "CAP_SETGID",
    "CAP_SETUID",
    "CAP_SETPCAP",
    "CAP_LINUX_IMMUTABLE",
    "CAP_NET_BIND_SERVICE",
    "CAP_NET_BROADCAST",
    "CAP_NET_ADMIN",
    "CAP_NET_RAW",
    "CAP_IPC_LOCK",
    "CAP_IPC_OWNER",
    "CAP_SYS_MODULE",
    "CAP_SYS_RAWIO",
    "CAP_SYS_CHROOT",
    "CAP_SYS_PTRACE",
    "CAP_SYS_PACCT",
    "CAP_SYS_ADMIN",
    "CAP_SYS_BOOT",
    "CAP_SYS_NICE",
    "CAP_SYS_RESOURCE",
    "CAP_SYS_TIME",
    "CAP_SYS_TTY_CONFIG",
    "CAP_MKNOD",
    "CAP_LEASE",
    "CAP_AUDIT_WRITE",
    "CAP_AUDIT_CONTROL",
    "CAP_SETFCAP",
    "CAP_MAC_OVERRIDE",
    "CAP_MAC_ADMIN",
    "CAP_SYSLOG",
    "CAP_WAKE_ALARM",
    "CAP_BLOCK_SUSPEND",
    "CAP_AUDIT_READ",
    "CAP_PERFMON",
    "CAP_BPF",
    "CAP_CHECKPOINT_RESTORE",
]

MASKED_PATHS = [
    "/proc/acpi",
    "/proc/kcore",
    "/proc/keys",
    "/proc/latency_stats",
    "/proc/timer_list",
    "/proc/timer_stats",
    "/proc/sched_debug",
    "/proc/scsi",
    "/sys/firmware",
]

READONLY_PATHS = [
    "/proc/asound",
    "/proc/bus",
    "/proc/fs",
    "/proc/irq",
    "/proc/sys",
    "/proc/sysrq-trigger",
]


def get_process(privileged_container: bool) -> Process:
    """
    Default process fields.

    :param privileged_container: Whether the container runs privileged.
    :return: A new Process with the default capability sets.
    """
    caps = DEFAULT_UNIX_CAPS_PRIVILEGED if privileged_container else DEFAULT_UNIX_CAPS
    return Process(
        cwd="/",
        no_new_privileges=True,
        capabilities=LinuxCapabilities(
            bounding=list(caps),
            effective=list(caps),
            permitted=list(caps),
        ),
    )


def get_mounts(is_pause_container: bool, privileged_container: bool) -> List[Mount]:
    """
    Default mounts. The cgroup mount is only given to workload containers.

    :param is_pause_container: Whether the mounts are for the sandbox container.
    :param privileged_container: Privileged containers get read-write sysfs and cgroups.
    :return: New Mount objects, in containerd order.
    """
    sysfs_access = "rw" if privileged_container else "ro"

    mounts = [
        Mount(destination="/proc", type="proc", source="proc",
              options=["nosuid", "noexec", "nodev"]),
        Mount(destination="/dev", type="tmpfs", source="tmpfs",
              options=["nosuid", "strictatime", "mode=755", "size=65536k"]),
        Mount(destination="/dev/pts", type="devpts", source="devpts",
              options=["nosuid", "noexec", "newinstance", "ptmxmode=0666", "mode=0620", "gid=5"]),
        Mount(destination="/dev/shm", type="tmpfs", source="shm",
              options=["nosuid", "noexec", "nodev", "mode=1777", "size=65536k"]),
        Mount(destination="/dev/mqueue", type="mqueue", source="mqueue",
              options=["nosuid", "noexec", "nodev"]),
        Mount(destination="/sys", type="sysfs", source="sysfs",
              options=["nosuid", "noexec", "nodev", sysfs_access]),
    ]

    if not is_pause_container:
        mounts.append(
            Mount(destination="/sys/fs/cgroup", type="cgroup", source="cgroup",
                  options=["nosuid", "noexec", "nodev", "relatime", sysfs_access])
        )

    return mounts


def get_linux(privileged_container: bool) -> Linux:
    """
    Masked and read-only paths. Privileged containers get neither.
    """
    if privileged_container:
        return Linux()
    return Linux(masked_paths=list(MASKED_PATHS), readonly_paths=list(READONLY_PATHS))
