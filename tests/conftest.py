import json
import threading

import pytest

from k2p.exceptions import ImageResolutionError
from k2p.MODELS.image_metadata import ImageConfig, ImageLayer, ImageMetadata
from k2p.MODELS.infra_policy import InfraPolicyTemplate
from k2p.POLICY.agent_policy import AgentPolicy

SHARED_SOURCE = "^/run/kata-containers/shared/containers/$(bundle-id)-[a-z0-9]{16}-"

INFRA_SETTINGS = {
    "pause_container": {
        "process": {
            "user": {"uid": 65535, "gid": 65535},
            "args": [],
            "env": [],
            "cwd": "/",
        },
        "mounts": [
            {"destination": "/dev/shm", "type": "bind", "source": "/run/kata-containers/sandbox/shm", "options": ["rbind"]},
        ],
        "annotations": {"io.kubernetes.cri.sandbox-memory": "0"},
    },
    "other_container": {
        "process": {
            "user": {"uid": 0, "gid": 0},
            "args": [],
            "env": ["HOSTNAME=$(host-name)"],
            "cwd": "/",
        },
        "mounts": [
            {"destination": "/etc/hosts", "type": "bind", "source": "", "options": ["rbind", "rprivate", "rw"]},
            {"destination": "/etc/hostname", "type": "bind", "source": "", "options": ["rbind", "rprivate"]},
            {"destination": "/etc/resolv.conf", "type": "bind", "source": "", "options": ["rbind", "rprivate"]},
            {"destination": "/dev/shm", "type": "bind", "source": "/run/kata-containers/sandbox/shm", "options": ["rbind"]},
            {"destination": "/var/run/secrets/azure/tokens", "type": "bind", "source": "", "options": ["rbind", "rprivate", "ro"]},
        ],
        "annotations": {},
    },
    "volumes": {
        "emptyDir": {
            "mount_type": "bind",
            "mount_source": "^/run/kata-containers/shared/containers/$(bundle-id)/rootfs/local/",
            "mount_point": "^/run/kata-containers/shared/containers/$(bundle-id)/rootfs/local/",
            "driver": "local",
            "source": "local",
            "fstype": "local",
            "options": ["mode=0777"],
        },
        "configMap": {
            "mount_type": "bind",
            "mount_source": "$(sfprefix)",
            "mount_point": "^$(cpath)/watchable/$(bundle-id)-[a-z0-9]{16}-",
            "driver": "watchable-bind",
            "fstype": "bind",
            "options": ["rbind", "rprivate", "ro"],
        },
        "confidential_configMap": {
            "mount_type": "bind",
            "mount_source": "$(sfprefix)",
            "mount_point": "$(sfprefix)",
            "driver": "local",
            "fstype": "bind",
            "options": ["rbind", "rprivate", "ro"],
        },
    },
    "shared_files": {"source_path": SHARED_SOURCE},
    "kata_config": {"confidential_guest": False},
    "request_defaults": {"ReadStreamRequest": True},
}

LAYER = ImageLayer(diff_id="sha256:" + "a" * 64, verity_hash="b" * 64)


class FakeImageResolver:
    """
    Serves image configs from memory. Every image has a single layer.
    """

    def __init__(self):
        self.images = {}
        self.failing = set()
        self.calls = []
        self._lock = threading.Lock()

    def resolve(self, image, use_cache=False):
        with self._lock:
            self.calls.append(image)
        if image in self.failing:
            raise ImageResolutionError(image, "manifest unknown")
        config = ImageConfig.model_validate(self.images.get(image, {}))
        return ImageMetadata(image=image, config=config, layers=[LAYER])


@pytest.fixture
def infra_settings():
    return json.loads(json.dumps(INFRA_SETTINGS))


@pytest.fixture
def infra_policy(infra_settings):
    return InfraPolicyTemplate.model_validate(infra_settings)


@pytest.fixture
def infra_file(tmp_path, infra_settings):
    path = tmp_path / "infra-settings.json"
    path.write_text(json.dumps(infra_settings))
    return path


@pytest.fixture
def agent_policy(infra_policy):
    return AgentPolicy(infra_policy)


@pytest.fixture
def resolver():
    return FakeImageResolver()
