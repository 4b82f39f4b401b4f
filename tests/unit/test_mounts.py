"""
Unit tests for mount and storage resolution.
"""
import pytest

from k2p.exceptions import UnsupportedVolumeKindError
from k2p.MODELS.infra_policy import KataConfig
from k2p.MODELS.kubernetes import Container, Volume, VolumeMount
from k2p.MODELS.oci import Mount
from k2p.POLICY import containerd
from k2p.POLICY.mounts import MountResolver, final_segment, upsert_mount

SHARED_SOURCE = "^/run/kata-containers/shared/containers/$(bundle-id)-[a-z0-9]{16}-"


def volume(name, **source):
    return Volume.model_validate({"name": name, **source})


def mount_at(mounts, destination):
    matching = [m for m in mounts if m.destination == destination]
    assert len(matching) == 1
    return matching[0]


@pytest.fixture
def mount_resolver(infra_policy):
    return MountResolver(infra_policy)


class TestVolumeMounts:
    """Tests for the per-kind volume rules."""

    @pytest.mark.parametrize("source, storage_count", [
        ({"emptyDir": {}}, 1),
        ({"hostPath": {"path": "/var/log"}}, 0),
        ({"persistentVolumeClaim": {"claimName": "claim"}}, 0),
        ({"azureFile": {"secretName": "azure", "shareName": "share"}}, 0),
        ({"configMap": {"name": "settings"}}, 1),
        ({"secret": {"secretName": "token"}}, 1),
        ({"projected": {"sources": []}}, 0),
        ({"downwardAPI": {"items": []}}, 0),
    ])
    def test_one_mount_per_volume_kind(self, mount_resolver, source, storage_count):
        mounts, storages = [], []
        vm = VolumeMount(name="vol", mount_path="/mnt/vol")

        mount_resolver.add_volume_mount(mounts, storages, volume("vol", **source), vm)

        assert [m.destination for m in mounts] == ["/mnt/vol"]
        assert len(storages) == storage_count

    def test_empty_dir(self, mount_resolver):
        mounts, storages = [], []
        vm = VolumeMount(name="data", mount_path="/data")

        mount_resolver.add_volume_mount(mounts, storages, volume("data", emptyDir={}), vm, fs_group=2000)

        mount = mount_at(mounts, "/data")
        assert mount.type == "bind"
        assert mount.source == "^/run/kata-containers/shared/containers/$(bundle-id)/rootfs/local/data$"
        assert mount.options == ["rbind", "rprivate", "rw"]

        storage = storages[0]
        assert storage.driver == "local"
        assert storage.source == "local"
        assert storage.options == ["mode=0777"]
        assert storage.mount_point.endswith("/data$")
        assert storage.fs_group == 2000

    def test_empty_dir_sub_path_expr_uses_config_map_naming(self, mount_resolver):
        mounts, storages = [], []
        vm = VolumeMount(name="logs", mount_path="/var/log/app", sub_path_expr="$(POD_NAME)")

        mount_resolver.add_volume_mount(mounts, storages, volume("logs", emptyDir={}), vm)

        mount = mount_at(mounts, "/var/log/app")
        assert mount.type == "bind"
        assert mount.source == "$(sfprefix)app$"
        assert mount.options == ["rbind", "rprivate", "rw"]
        assert storages == []

    @pytest.mark.parametrize("host_path", ["/dev/xvdb", "/sys/kernel/debug"])
    def test_host_path_under_dev_or_sys_is_literal(self, mount_resolver, host_path):
        mounts = []
        vm = VolumeMount(name="host", mount_path="/host/mnt", mount_propagation="Bidirectional")

        mount_resolver.add_volume_mount(mounts, [], volume("host", hostPath={"path": host_path}), vm)

        mount = mount_at(mounts, "/host/mnt")
        assert mount.type == "bind"
        assert mount.source == host_path
        assert mount.options == ["rbind", "rshared", "rw"]

    @pytest.mark.parametrize("host_path", ["/devices", "/system", "/dev", "/sys", "/var/dev/x", "/devx/sys/"])
    def test_host_path_elsewhere_is_shared(self, mount_resolver, host_path):
        mounts = []
        vm = VolumeMount(name="host", mount_path="/host/devices")

        mount_resolver.add_volume_mount(mounts, [], volume("host", hostPath={"path": host_path}), vm)

        mount = mount_at(mounts, "/host/devices")
        assert mount.source == SHARED_SOURCE + "devices$"
        assert mount.options == ["rbind", "rprivate", "rw"]

    def test_downward_api_is_read_only(self, mount_resolver):
        mounts = []
        vm = VolumeMount(name="info", mount_path="/etc/podinfo", read_only=False)

        mount_resolver.add_volume_mount(mounts, [], volume("info", downwardAPI={"items": []}), vm)

        assert mount_at(mounts, "/etc/podinfo").options == ["rbind", "rprivate", "ro"]

    def test_projected_is_read_only(self, mount_resolver):
        mounts = []
        vm = VolumeMount(name="token", mount_path="/var/run/secrets/tokens")

        mount_resolver.add_volume_mount(mounts, [], volume("token", projected={"sources": []}), vm)

        mount = mount_at(mounts, "/var/run/secrets/tokens")
        assert mount.source == SHARED_SOURCE + "tokens$"
        assert mount.options == ["rbind", "rprivate", "ro"]

    def test_config_map(self, mount_resolver):
        mounts, storages = [], []
        vm = VolumeMount(name="cfg", mount_path="/etc/config")

        mount_resolver.add_volume_mount(mounts, storages, volume("cfg", configMap={"name": "settings"}), vm)

        mount = mount_at(mounts, "/etc/config")
        assert mount.source == "^$(cpath)/watchable/$(bundle-id)-[a-z0-9]{16}-config$"
        assert mount.options == ["rbind", "rprivate", "ro"]

        storage = storages[0]
        assert storage.driver == "watchable-bind"
        assert storage.source == "$(sfprefix)cfg$"
        assert storage.mount_point == mount.source

    def test_config_map_confidential_guest(self, infra_policy):
        confidential = infra_policy.model_copy(update={"kata_config": KataConfig(confidential_guest=True)})
        mounts, storages = [], []
        vm = VolumeMount(name="cfg", mount_path="/etc/config")

        MountResolver(confidential).add_volume_mount(mounts, storages, volume("cfg", configMap={"name": "settings"}), vm)

        assert storages == []
        assert mount_at(mounts, "/etc/config").source == "$(sfprefix)config$"

    def test_unknown_volume_source(self, mount_resolver):
        vm = VolumeMount(name="disk", mount_path="/disk")
        gce = volume("disk", gcePersistentDisk={"pdName": "disk-1"})

        with pytest.raises(UnsupportedVolumeKindError) as excinfo:
            mount_resolver.add_volume_mount([], [], gce, vm)

        assert excinfo.value.kind == "gcePersistentDisk"
        assert "disk" in str(excinfo.value)

    def test_volume_without_source(self, mount_resolver):
        with pytest.raises(UnsupportedVolumeKindError):
            mount_resolver.add_volume_mount([], [], volume("empty"), VolumeMount(name="empty", mount_path="/e"))

    def test_volume_with_two_sources_is_invalid(self):
        with pytest.raises(ValueError):
            volume("both", emptyDir={}, hostPath={"path": "/tmp"})


class TestInfraMounts:
    """Tests for folding the infra template mounts."""

    def test_regular_container(self, mount_resolver):
        container = Container(name="app", image="busybox")
        mounts = containerd.get_mounts(False, False)

        mount_resolver.add_infra_mounts(mounts, container, is_pause_container=False)

        destinations = [m.destination for m in mounts]
        assert len(destinations) == len(set(destinations))
        assert "/var/run/secrets/azure/tokens" not in destinations
        assert mount_at(mounts, "/etc/hosts").source == SHARED_SOURCE + "hosts$"
        assert mount_at(mounts, "/etc/hostname").options == ["rbind", "rprivate", "rw"]
        assert mount_at(mounts, "/etc/resolv.conf").options == ["rbind", "rprivate", "rw"]

        shm = mount_at(mounts, "/dev/shm")
        assert shm.type == "bind"
        assert shm.source == "/run/kata-containers/sandbox/shm"
        assert shm.options == ["rbind"]

    def test_read_only_root_filesystem(self, mount_resolver):
        container = Container.model_validate({
            "name": "app",
            "image": "busybox",
            "securityContext": {"readOnlyRootFilesystem": True},
        })
        mounts = containerd.get_mounts(False, False)

        mount_resolver.add_infra_mounts(mounts, container, is_pause_container=False)

        assert mount_at(mounts, "/etc/hostname").options == ["rbind", "rprivate", "ro"]

    def test_template_mount_kept_when_targeted(self, mount_resolver):
        container = Container.model_validate({
            "name": "app",
            "image": "busybox",
            "volumeMounts": [{"name": "azure", "mountPath": "/var/run/secrets/azure/tokens"}],
        })
        mounts = containerd.get_mounts(False, False)

        mount_resolver.add_infra_mounts(mounts, container, is_pause_container=False)

        assert mount_at(mounts, "/var/run/secrets/azure/tokens").source == SHARED_SOURCE + "tokens$"

    def test_pause_container(self, mount_resolver):
        container = Container(name="pause", image="registry.k8s.io/pause:3.6")
        mounts = containerd.get_mounts(True, False)

        mount_resolver.add_infra_mounts(mounts, container, is_pause_container=True)

        assert len(mounts) == 6
        assert "/sys/fs/cgroup" not in [m.destination for m in mounts]
        assert mount_at(mounts, "/dev/shm").source == "/run/kata-containers/sandbox/shm"


def test_upsert_mount_replaces_existing_destination():
    mounts = [Mount(destination="/data", type="tmpfs", source="tmpfs", options=["rw"])]

    upsert_mount(mounts, Mount(destination="/data", type="bind", source="/src", options=["rbind", "ro"]))
    upsert_mount(mounts, Mount(destination="/other", type="bind", source="/o", options=[]))

    assert [m.destination for m in mounts] == ["/data", "/other"]
    assert mounts[0].type == "bind"
    assert mounts[0].source == "/src"
    assert mounts[0].options == ["rbind", "ro"]


def test_final_segment():
    assert final_segment("/etc/config") == "config"
    assert final_segment("/etc/config/") == "config"
