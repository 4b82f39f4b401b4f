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
Per-container policy resolution.

Merges the container declared by the workload, the infra template and the image
metadata into the process, mounts, storage devices and annotations the agent
will accept for that container.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..exceptions import MalformedFieldError
from ..MODELS.image_metadata import ImageMetadata
from ..MODELS.infra_policy import InfraPolicyTemplate
from ..MODELS.kubernetes import Container, PodSecurityContext, Volume
from ..MODELS.oci import Mount, ResolvedContainerPolicy, Root, StorageDevice
from . import containerd
from .annotations import remove_policy_annotation
from .infra import OTHER_CONTAINER_ANNOTATIONS, PAUSE_CONTAINER_ANNOTATIONS
from .mounts import MountResolver
from .process import (
    EnvResolver,
    add_missing,
    resolve_image_process,
    resolve_infra_process,
    resolve_yaml_process,
)

logger = logging.getLogger(__name__)

ROOTFS_PATH = "$(cpath)/$(bundle-id)"


@dataclass
class PodContext:
    """
    Pod level inputs shared by all containers of a workload.
    """
    resource_name: str
    namespace: str
    host_name: str
    volumes: List[Volume] = field(default_factory=list)
    security_context: Optional[PodSecurityContext] = None
    sandbox_name: Optional[str] = None
    annotations: Dict[str, str] = field(default_factory=dict)
    env_resolver: Optional[EnvResolver] = None


class PolicyResolver:
    """
    Resolves the policy of individual containers. Holds no per-container state.
    """

    def __init__(self, infra_policy: InfraPolicyTemplate):
        """
        :param infra_policy: The infra template of the current run.
        """
        self.infra_policy = infra_policy
        self.mount_resolver = MountResolver(infra_policy)

    def resolve(
        self,
        container: Container,
        image: ImageMetadata,
        pod: PodContext,
        is_pause_container: bool = False,
    ) -> ResolvedContainerPolicy:
        """
        Resolves the policy of one container.

        :param container: The container, as declared or as added by the infrastructure.
        :param image: Metadata of the container image.
        :param pod: Pod level inputs.
        :param is_pause_container: Whether this is the sandbox container.
        :return: A new ResolvedContainerPolicy.
        """
        logger.debug("Resolving container %s of %s", container.name, pod.resource_name)
        privileged = container.privileged

        mounts, storages = self.resolve_mounts(container, pod, is_pause_container)

        exec_commands = list(container.allowed_commands)
        add_missing(container.probe_commands(), exec_commands)

        return ResolvedContainerPolicy(
            name=container.name,
            image=container.image,
            is_pause_container=is_pause_container,
            process=self.resolve_process(container, image, pod, is_pause_container),
            mounts=mounts,
            storages=storages,
            image_layers=list(image.layers),
            annotations=self.resolve_annotations(container, pod, is_pause_container),
            linux=containerd.get_linux(privileged),
            root=Root(path=ROOTFS_PATH, readonly=container.read_only_root_filesystem),
            hostname=pod.host_name,
            exec_commands=exec_commands,
        )

    def resolve_process(self, container, image, pod, is_pause_container):
        process = containerd.get_process(container.privileged)

        env_resolver = pod.env_resolver or EnvResolver(pod.namespace)
        env = env_resolver.resolve(container, pod.resource_name)

        resolve_yaml_process(process, container, pod.security_context, env)
        resolve_image_process(process, image.config, container, pod.security_context)

        template = self.infra_policy.container_template(is_pause_container)
        resolve_infra_process(process, template.process)
        return process

    def resolve_mounts(self, container, pod, is_pause_container):
        """
        Folds, in order, the containerd default mounts, the infra template mounts
        and the container volume mounts.

        :return: The mounts and the storage devices of the container.
        """
        mounts: List[Mount] = containerd.get_mounts(is_pause_container, container.privileged)
        storages: List[StorageDevice] = []

        self.mount_resolver.add_infra_mounts(mounts, container, is_pause_container)

        volumes = {volume.name: volume for volume in pod.volumes}
        fs_group = pod.security_context.fs_group if pod.security_context else None

        for volume_mount in container.volume_mounts:
            volume = volumes.get(volume_mount.name)
            if volume is None:
                raise MalformedFieldError(
                    pod.resource_name,
                    f"{container.name}.volumeMounts.{volume_mount.name}",
                    "mount of an undefined volume",
                )
            self.mount_resolver.add_volume_mount(mounts, storages, volume, volume_mount, fs_group)

        return mounts, storages

    def resolve_annotations(self, container, pod, is_pause_container) -> Dict[str, str]:
        """
        Explicit annotations win. The infra template annotations and then the
        fixed defaults are only inserted where a key is absent.
        """
        annotations = remove_policy_annotation(pod.annotations)

        explicit = {"io.kubernetes.cri.sandbox-namespace": pod.namespace}
        if pod.sandbox_name:
            explicit["io.kubernetes.cri.sandbox-name"] = pod.sandbox_name
        if not is_pause_container:
            explicit["io.kubernetes.cri.container-name"] = container.name
            explicit["io.kubernetes.cri.image-name"] = container.image
        for key, value in explicit.items():
            annotations.setdefault(key, value)

        template = self.infra_policy.container_template(is_pause_container)
        for key, value in template.annotations.items():
            annotations.setdefault(key, value)

        defaults = PAUSE_CONTAINER_ANNOTATIONS if is_pause_container else OTHER_CONTAINER_ANNOTATIONS
        for key, value in defaults:
            annotations.setdefault(key, value)

        return annotations
