"""
Loading of the infra data file, and the fixed infrastructure settings that
complement it.
"""
import json
import logging
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..MODELS.infra_policy import InfraPolicyTemplate

logger = logging.getLogger(__name__)

# Infra template mounts kept even when no volume mount of the container targets them.
INFRA_MOUNT_DESTINATIONS = (
    "/sys/fs/cgroup",
    "/etc/hosts",
    "/dev/termination-log",
    "/etc/hostname",
    "/etc/resolv.conf",
    "/dev/shm",
    "/var/run/secrets/kubernetes.io/serviceaccount",
)

# Default annotations, in the order they are merged. Values are matched as
# patterns by the agent; $(...) placeholders are substituted in the guest.
PAUSE_CONTAINER_ANNOTATIONS = (
    ("io.kubernetes.cri.container-type", "sandbox"),
    ("io.kubernetes.cri.sandbox-id", "^[a-z0-9]{64}$"),
    (
        "io.kubernetes.cri.sandbox-log-directory",
        "^/var/log/pods/$(sandbox-namespace)_$(sandbox-name)_"
        "[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    ),
    ("io.katacontainers.pkg.oci.container_type", "pod_sandbox"),
    ("io.kubernetes.cri.sandbox-namespace", "default"),
    ("io.katacontainers.pkg.oci.bundle_path", "/run/containerd/io.containerd.runtime.v2.task/k8s.io/$(bundle-id)"),
)

OTHER_CONTAINER_ANNOTATIONS = (
    ("io.katacontainers.pkg.oci.bundle_path", "/run/containerd/io.containerd.runtime.v2.task/k8s.io/$(bundle-id)"),
    ("io.kubernetes.cri.sandbox-id", "^[a-z0-9]{64}$"),
    ("io.katacontainers.pkg.oci.container_type", "pod_container"),
    ("io.kubernetes.cri.container-type", "container"),
)

PAUSE_IMAGE = "registry.k8s.io/pause:3.6"
PAUSE_CONTAINER_NAME = "pause"
PAUSE_COMMAND = ["/pause"]


def load_infra_policy(infra_data_file: Union[str, Path]) -> InfraPolicyTemplate:
    """
    Loads the infra data file.

    Args:
        infra_data_file: Path to the JSON infra data file.

    Returns:
        The immutable infra template.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    path = Path(infra_data_file)
    logger.debug("Loading infra data from %s", path)

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigurationError(
            f"Cannot open file {path}. Copy it to the current directory or "
            f"specify its path using the --infra-data option."
        ) from None
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Cannot read infra data file {path}: {e}") from e

    try:
        infra_policy = InfraPolicyTemplate.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid infra data file {path}: {e}") from e

    logger.debug("Finished loading infra data, confidential guest: %s", infra_policy.confidential_guest)
    return infra_policy
