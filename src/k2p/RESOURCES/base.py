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
Base classes of the Kubernetes resource handlers.

Every handler goes through the same lifecycle: created from a parsed YAML
document, initialized once (image metadata is pulled), then asked for its
policy and for its annotated YAML.
"""
import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, List, Optional, Type

import yaml

from ..exceptions import MalformedFieldError
from ..MODELS.image_metadata import ImageMetadata
from ..MODELS.kubernetes import Container, ObjectMeta, PodSpec, Volume
from ..MODELS.workloads import Document
from ..PARSERS.manifest_parser import parse_exec_commands, parse_model
from ..POLICY.annotations import add_policy_annotation, get_policy_annotation
from ..POLICY.infra import PAUSE_COMMAND, PAUSE_CONTAINER_NAME, PAUSE_IMAGE
from ..POLICY.resolver import PodContext
from ..REGISTRY.image_resolver import ImageResolver, resolve_all

logger = logging.getLogger(__name__)


def dump_yaml(tree: Any) -> str:
    return yaml.safe_dump(tree, sort_keys=False, default_flow_style=False)


class K8sResource(ABC):
    """
    A Kubernetes document and the policy derived from it.
    """

    def __init__(self, doc: Dict[str, Any], text: Optional[str] = None, silent_unsupported_fields: bool = False):
        """
        :param doc: The document tree, as loaded from YAML. Never modified.
        :param text: The document text, when read from a YAML stream.
        :param silent_unsupported_fields: Log and drop unknown fields instead of failing.
        """
        self.doc = doc
        self.text = text
        self.silent_unsupported_fields = silent_unsupported_fields

    @property
    def kind(self) -> str:
        return self.doc.get("kind", "")

    @property
    def name(self) -> str:
        metadata = self.doc.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        return f"{self.kind}/{metadata.get('name') or metadata.get('generateName') or '<unnamed>'}"

    def register(self, agent_policy) -> None:
        """Makes data of this document available to the other documents of the run."""

    def init(self, resolver: ImageResolver, use_cache: bool = False) -> None:
        """Pulls what the policy of this document depends on."""

    @abstractmethod
    def generate_policy(self, agent_policy) -> str:
        """
        :return: The encoded policy, or an empty string for documents without workload.
        """

    def annotated_tree(self, policy: str) -> Dict[str, Any]:
        """
        :return: A copy of the document tree carrying the policy.
        """
        return copy.deepcopy(self.doc)

    def serialize(self, policy: str) -> str:
        return dump_yaml(self.annotated_tree(policy))

    def generated_policies(self, policy: str) -> List[str]:
        """
        :return: The encoded policy of each workload, given the policy of this document.
        """
        return [policy] if policy else []

    def policies(self) -> List[str]:
        """
        :return: The encoded policies already present in the document.
        """
        return []


class PodTemplateResource(K8sResource):
    """
    A document that carries a pod spec: a Pod, or a controller with a pod template.
    """
    document_model: ClassVar[Type[Document]] = Document
    metadata_path: ClassVar[str] = "spec.template.metadata"

    def __init__(self, doc: Dict[str, Any], text: Optional[str] = None, silent_unsupported_fields: bool = False):
        super().__init__(doc, text, silent_unsupported_fields)
        self.document = parse_model(self.document_model, doc, self.name, silent_unsupported_fields)

        exec_commands = parse_exec_commands(self.pod_metadata.annotations, self.name)
        for container in self.pod_spec.init_containers + self.pod_spec.containers:
            container.allowed_commands = list(exec_commands.get(container.name, []))

        self.containers: List[Container] = []
        self.images: List[ImageMetadata] = []

    @property
    def pod_spec(self) -> PodSpec:
        return self.document.spec.template.spec

    @property
    def pod_metadata(self) -> ObjectMeta:
        """The metadata of the pods this document creates."""
        return self.document.spec.template.metadata

    @property
    def resource_name(self) -> str:
        name = self.document.metadata.name
        if not name:
            raise MalformedFieldError(self.name, "metadata.name", "missing name")
        return name

    @property
    def namespace(self) -> str:
        return self.document.metadata.namespace or "default"

    def sandbox_name(self) -> Optional[str]:
        return None

    @abstractmethod
    def name_pattern(self) -> str:
        """Pattern of the host name of pods created from this document."""

    def host_name_pattern(self) -> str:
        if self.pod_spec.host_network:
            return "^$(node-name)$"
        return self.name_pattern()

    def pod_volumes(self) -> List[Volume]:
        return list(self.pod_spec.volumes)

    def container_sequence(self) -> List[Container]:
        """
        The containers started in the sandbox: the pause container, then the
        init containers and the regular containers in declared order.
        """
        pause = Container(name=PAUSE_CONTAINER_NAME, image=PAUSE_IMAGE, command=list(PAUSE_COMMAND))
        return [pause] + list(self.pod_spec.init_containers) + list(self.pod_spec.containers)

    def init(self, resolver: ImageResolver, use_cache: bool = False) -> None:
        self.containers = self.container_sequence()
        logger.info("Resolving %d images of %s", len(self.containers), self.name)
        self.images = resolve_all(resolver, [c.image for c in self.containers], use_cache)

    def pod_context(self, agent_policy) -> PodContext:
        metadata = self.pod_metadata
        spec = self.pod_spec
        return PodContext(
            resource_name=self.name,
            namespace=self.namespace,
            host_name=self.host_name_pattern(),
            volumes=self.pod_volumes(),
            security_context=spec.security_context,
            sandbox_name=self.sandbox_name(),
            annotations=dict(metadata.annotations),
            env_resolver=agent_policy.env_resolver(
                self.namespace,
                service_account=spec.service_account_name or spec.service_account,
                labels=metadata.labels,
                annotations=metadata.annotations,
            ),
        )

    def generate_policy(self, agent_policy) -> str:
        return agent_policy.encode(agent_policy.generate(self))

    def annotated_tree(self, policy: str) -> Dict[str, Any]:
        tree = copy.deepcopy(self.doc)
        add_policy_annotation(tree, self.metadata_path, policy)
        return tree

    def policies(self) -> List[str]:
        policy = get_policy_annotation(self.doc, self.metadata_path)
        return [policy] if policy else []


class ControllerResource(PodTemplateResource):
    """
    A controller creating pods named `<name>-<5 random characters>`.
    """

    def name_pattern(self) -> str:
        return f"^{self.resource_name}-[a-z0-9]{{5}}$"
