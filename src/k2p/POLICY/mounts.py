# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Mount and storage device resolution for container volumes.

Sources and mount points are patterns: the agent matches them against the
guest paths, so each one is anchored with a trailing `$`.
"""
import logging
from pathlib import PurePosixPath
from typing import List, Optional

from ..exceptions import UnsupportedVolumeKindError
from ..MODELS.infra_policy import InfraPolicyTemplate
from ..MODELS.kubernetes import Container, Volume, VolumeMount
from ..MODELS.oci import Mount, StorageDevice
from .infra import INFRA_MOUNT_DESTINATIONS

logger = logging.getLogger(__name__)

ROOTFS_ACCESS_DESTINATIONS = ("/etc/hostname", "/etc/resolv.conf")


def upsert_mount(mounts: List[Mount], mount: Mount) -> None:
    """
    Replaces type, source and options of the mount with the same destination,
    or appends the mount if there is none.
    """
    for existing in mounts:
        if existing.destination == mount.destination:
            logger.debug("Updating mount %s, source = %s", mount.destination, mount.source)
            existing.type = mount.type
            existing.source = mount.source
            existing.options = list(mount.options)
            return

    logger.debug("Adding mount %s, source = %s", mount.destination, mount.source)
    mounts.append(mount)


def final_segment(mount_path: str) -> str:
    return PurePosixPath(mount_path).name


class MountResolver:
    """
    Applies the infra template and the pod volumes to the mounts of one container.
    """

    def __init__(self, infra_policy: InfraPolicyTemplate):
        """
        :param infra_policy: The infra template of the current run.
        """
        self.infra_policy = infra_policy

    def shared_bind_source(self, mount_path: str) -> str:
        """
        Source of content the host shares with the guest, keyed by the final
        segment of the mount path.
        """
        return self.infra_policy.shared_files.source_path + final_segment(mount_path) + "$"

    def add_infra_mounts(self, mounts: List[Mount], container: Container, is_pause_container: bool) -> None:
        """
        Folds the infra template mounts into the accumulated mounts.

        :param mounts: Accumulated mounts, updated in place.
        :param container: The container being resolved.
        :param is_pause_container: Whether the container is the sandbox container.
        """
        rootfs_access = "ro" if container.read_only_root_filesystem else "rw"
        yaml_paths = {m.mount_path for m in container.volume_mounts}
        template = self.infra_policy.container_template(is_pause_container)

        for infra_mount in template.mounts:
            if infra_mount.destination not in INFRA_MOUNT_DESTINATIONS and infra_mount.destination not in yaml_paths:
                continue

            mount = infra_mount.model_copy(deep=True)
            if not mount.source and mount.type == "bind":
                mount.source = self.shared_bind_source(mount.destination)

            if any(m.destination == mount.destination for m in mounts):
                upsert_mount(mounts, mount)
                continue

            if not is_pause_container and mount.destination in ROOTFS_ACCESS_DESTINATIONS:
                mount.options.append(rootfs_access)
            mounts.append(mount)

    def add_volume_mount(
        self,
        mounts: List[Mount],
        storages: List[StorageDevice],
        volume: Volume,
        volume_mount: VolumeMount,
        fs_group: Optional[int] = None,
    ) -> None:
        """
        Resolves one declared volume mount.

        :param mounts: Accumulated mounts, updated in place.
        :param storages: Accumulated storage devices, appended to.
        :param volume: The pod volume the mount refers to.
        :param volume_mount: The container volume mount.
        :param fs_group: Pod fsGroup, recorded on created storage devices.
        :raises UnsupportedVolumeKindError: For volume sources without a rule.
        """
        kind = volume.source_kind
        logger.debug("Resolving %s volume %s at %s", kind, volume.name, volume_mount.mount_path)

        if kind == "emptyDir":
            self._empty_dir(mounts, storages, volume_mount, fs_group)
        elif kind in ("persistentVolumeClaim", "azureFile"):
            self._shared_bind(mounts, volume_mount, "rprivate", "rw")
        elif kind == "hostPath":
            self._host_path(mounts, volume, volume_mount)
        elif kind in ("configMap", "secret"):
            self._config_map(mounts, storages, volume_mount, fs_group)
        elif kind == "projected":
            self._shared_bind(mounts, volume_mount, "rprivate", "ro")
        elif kind == "downwardAPI":
            # Read-only whatever the declared mode.
            self._shared_bind(mounts, volume_mount, "rprivate", "ro")
        else:
            raise UnsupportedVolumeKindError(volume.name, kind)

    def _empty_dir(self, mounts, storages, volume_mount, fs_group):
        template = self.infra_policy.volumes.empty_dir

        if volume_mount.sub_path_expr is None:
            storages.append(StorageDevice(
                driver=template.driver,
                driver_options=[],
                source=template.source,
                fstype=template.fstype,
                options=list(template.options),
                mount_point=template.mount_point + volume_mount.name + "$",
                fs_group=fs_group,
            ))
            mount_type = template.mount_type
            source = template.mount_source + volume_mount.name + "$"
        else:
            # Same naming as configMap volumes.
            mount_type = "bind"
            source = self.infra_policy.volumes.config_map.mount_source + final_segment(volume_mount.mount_path) + "$"

        upsert_mount(mounts, Mount(
            destination=volume_mount.mount_path,
            type=mount_type,
            source=source,
            options=["rbind", "rprivate", "rw"],
        ))

    def _shared_bind(self, mounts, volume_mount, propagation, access):
        upsert_mount(mounts, Mount(
            destination=volume_mount.mount_path,
            type="bind",
            source=self.shared_bind_source(volume_mount.mount_path),
            options=["rbind", propagation, access],
        ))

    def _host_path(self, mounts, volume, volume_mount):
        host_path = volume.host_path.path
        propagation = "rshared" if volume_mount.mount_propagation == "Bidirectional" else "rprivate"

        if host_path.startswith(("/dev/", "/sys/")):
            upsert_mount(mounts, Mount(
                destination=volume_mount.mount_path,
                type="bind",
                source=host_path,
                options=["rbind", propagation, "rw"],
            ))
        else:
            self._shared_bind(mounts, volume_mount, propagation, "rw")

    def _config_map(self, mounts, storages, volume_mount, fs_group):
        confidential = self.infra_policy.confidential_guest
        volumes = self.infra_policy.volumes
        template = volumes.confidential_config_map if confidential else volumes.config_map
        name = final_segment(volume_mount.mount_path)

        if not confidential:
            storages.append(StorageDevice(
                driver=template.driver,
                driver_options=[],
                source=template.mount_source + volume_mount.name + "$",
                fstype=template.fstype,
                options=list(template.options),
                mount_point=template.mount_point + name + "$",
                fs_group=fs_group,
            ))

        upsert_mount(mounts, Mount(
            destination=volume_mount.mount_path,
            type=template.mount_type,
            source=template.mount_point + name + "$",
            options=list(template.options),
        ))
