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
Rendering of resolved containers into the agent policy text, and its transport encoding.
"""
import base64
import binascii
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from jinja2 import Template

from ..exceptions import ConfigurationError, PolicyConsistencyError
from ..MODELS.image_metadata import ImageLayer
from ..MODELS.infra_policy import InfraPolicyTemplate
from ..MODELS.oci import ResolvedContainerPolicy, StorageDevice
from .infra import load_infra_policy
from .process import EnvResolver
from .resolver import PolicyResolver

logger = logging.getLogger(__name__)

DEFAULT_RULES = "package agent_policy\n"

POLICY_TEMPLATE = """{{ rules }}
policy_data := {{ policy_data }}
"""

OCI_VERSION = "1.1.0"

LAYER_SRC_PREFIX = "/var/lib/containerd/io.containerd.snapshotter.v1.tardev/layers"
LAYER_OPTION = (
    "{diff_id},tar,ro,io.katacontainers.fs-opt.block_device=file,"
    "io.katacontainers.fs-opt.is-layer,io.katacontainers.fs-opt.root-hash={verity_hash}"
)


def image_layer_storage(layers: List[ImageLayer]) -> StorageDevice:
    """
    The overlay storage holding the verified image layers of a container.

    :param layers: Image layers, lowest first.
    :return: A StorageDevice with one layer driver option per layer.
    """
    driver_options = [f"io.katacontainers.fs-opt.layer-src-prefix={LAYER_SRC_PREFIX}"]
    for layer in layers:
        option = LAYER_OPTION.format(diff_id=layer.diff_id, verity_hash=layer.verity_hash)
        encoded = base64.b64encode(option.encode("utf-8")).decode("ascii")
        driver_options.append(f"io.katacontainers.fs-opt.layer={encoded}")

    return StorageDevice(
        driver="overlayfs",
        driver_options=driver_options,
        source="",
        fstype="fuse3.kata-overlay",
        options=[],
        mount_point="^$(cpath)/$(bundle-id)$",
    )


class AgentPolicy:
    """
    Per-run state of the policy generation: the infra template, the rules text
    and the config map and secret data available to env resolution.
    """

    def __init__(self, infra_policy: InfraPolicyTemplate, rules: Optional[str] = None):
        """
        :param infra_policy: The infra template loaded for this run.
        :param rules: Policy rules prepended to the policy data. A bare package header when None.
        """
        self.infra_policy = infra_policy
        self.rules = rules if rules is not None else DEFAULT_RULES
        self.resolver = PolicyResolver(infra_policy)
        self.config_maps: Dict[str, Dict[str, str]] = {}
        self.secrets: Dict[str, Dict[str, str]] = {}
        self.template = Template(POLICY_TEMPLATE, keep_trailing_newline=True)

    @classmethod
    def from_files(cls, infra_data_file: Union[str, Path], rules_file: Optional[Union[str, Path]] = None):
        """
        Loads the infra data file and the optional rules file.

        :raises ConfigurationError: If either file is missing or invalid.
        """
        infra_policy = load_infra_policy(infra_data_file)

        rules = None
        if rules_file:
            try:
                rules = Path(rules_file).read_text()
            except OSError as e:
                raise ConfigurationError(f"Cannot read rules file {rules_file}: {e}") from e
            logger.debug("Loaded %d bytes of rules from %s", len(rules), rules_file)

        return cls(infra_policy, rules)

    def add_config_map(self, name: str, data: Dict[str, str]) -> None:
        logger.debug("Registering config map %s", name)
        self.config_maps[name] = dict(data)

    def add_secret(self, name: str, data: Dict[str, str]) -> None:
        logger.debug("Registering secret %s", name)
        self.secrets[name] = dict(data)

    def env_resolver(self, namespace: str, service_account=None, labels=None, annotations=None) -> EnvResolver:
        return EnvResolver(
            namespace,
            config_maps=self.config_maps,
            secrets=self.secrets,
            service_account=service_account,
            labels=labels,
            annotations=annotations,
        )

    def generate(self, resource) -> str:
        """
        Resolves every container of an initialized resource and renders the policy text.

        :param resource: A pod template resource whose init() has completed.
        :return: The policy text, not encoded.
        """
        pod = resource.pod_context(self)
        resolved = [
            self.resolver.resolve(container, image, pod, is_pause_container=(index == 0))
            for index, (container, image) in enumerate(zip(resource.containers, resource.images))
        ]
        return self.render(resolved)

    def render(self, containers: List[ResolvedContainerPolicy]) -> str:
        policy_data = {
            "containers": [self.container_data(c) for c in containers],
            "request_defaults": self.infra_policy.request_defaults,
        }
        return self.template.render(
            rules=self.rules.rstrip("\n"),
            policy_data=json.dumps(policy_data, indent=2),
        )

    @staticmethod
    def container_data(container: ResolvedContainerPolicy) -> dict:
        storages = []
        if container.image_layers:
            storages.append(image_layer_storage(container.image_layers).model_dump())
        storages.extend(s.model_dump() for s in container.storages)

        return {
            "OCI": {
                "Version": OCI_VERSION,
                "Process": container.process.model_dump(by_alias=True),
                "Root": container.root.model_dump(by_alias=True),
                "Mounts": [m.model_dump(by_alias=True) for m in container.mounts],
                "Hostname": container.hostname,
                "Annotations": container.annotations,
                "Linux": container.linux.model_dump(by_alias=True),
            },
            "storages": storages,
            "exec_commands": container.exec_commands,
        }

    @staticmethod
    def encode(policy: str) -> str:
        return base64.b64encode(policy.encode("utf-8")).decode("ascii")

    @staticmethod
    def decode(encoded: str) -> str:
        """
        Inverse of encode().

        :raises PolicyConsistencyError: If the value is not a base64 encoded policy.
        """
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise PolicyConsistencyError(f"Policy annotation is not a base64 encoded policy: {e}") from e
