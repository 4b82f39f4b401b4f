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
Policy generation for all the documents of a YAML stream.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..exceptions import ConfigurationError
from ..PARSERS.manifest_parser import load_documents
from ..POLICY.agent_policy import AgentPolicy
from ..REGISTRY.image_resolver import ImageResolver, RegistryImageResolver
from ..RESOURCES.base import K8sResource
from ..RESOURCES.config_objects import ConfigMap
from ..RESOURCES.factory import from_document
from ..UTILS.settings import GeneratorConfig

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = "---\n"


@dataclass
class GenerationResult:
    """
    Output of a run: the annotated YAML stream and the encoded policy of each workload.
    """
    documents: List[str] = field(default_factory=list)
    policies: List[str] = field(default_factory=list)

    @property
    def yaml(self) -> str:
        return join_documents(self.documents)


def join_documents(documents: List[str]) -> str:
    return DOCUMENT_SEPARATOR.join(doc.strip("\n") + "\n" for doc in documents)


class PolicyGenerator:
    """
    Drives a run: loads the documents, pulls their images and generates their policies.
    """

    def __init__(
        self,
        config: GeneratorConfig,
        resolver: Optional[ImageResolver] = None,
        agent_policy: Optional[AgentPolicy] = None,
    ):
        """
        Initializes the generator. The infra data and rules are loaded here, before
        any document is read.

        :param config: Settings of the run.
        :param resolver: Image resolver, the registry when None.
        :param agent_policy: Agent policy, loaded from the configured files when None.
        :raises ConfigurationError: If the infra data or rules file is missing or invalid.
        """
        self.config = config
        self.agent_policy = agent_policy or AgentPolicy.from_files(config.infra_data_file, config.rules_file)
        self.resolver = resolver or RegistryImageResolver(config.layers_cache_dir)
        self.load_config_maps()

    def load_config_maps(self) -> None:
        """
        Registers the ConfigMaps of the config map files.
        """
        for path in self.config.config_map_files:
            try:
                content = path.read_text()
            except OSError as e:
                raise ConfigurationError(f"Cannot read config map file {path}: {e}") from e

            for resource in self.load_resources(content):
                if not isinstance(resource, ConfigMap):
                    raise ConfigurationError(f"{path}: expected ConfigMap documents, found {resource.kind}")
                resource.register(self.agent_policy)

    def load_resources(self, content: str) -> List[K8sResource]:
        return [
            from_document(doc, text, self.config.silent_unsupported_fields)
            for doc, text in load_documents(content)
        ]

    def generate(self, content: str) -> GenerationResult:
        """
        Generates the policies of a YAML stream.

        :param content: The YAML documents.
        :return: The annotated documents and their policies. Nothing is returned on failure.
        """
        resources = self.load_resources(content)
        logger.info("Generating policies for %d documents", len(resources))

        # ConfigMaps and Secrets may follow the workloads using them.
        for resource in resources:
            resource.register(self.agent_policy)

        result = GenerationResult()
        for resource in resources:
            resource.init(self.resolver, self.config.use_cached_files)
            policy = resource.generate_policy(self.agent_policy)
            result.documents.append(resource.serialize(policy))
            result.policies.extend(resource.generated_policies(policy))

        return result


def decode_policies(content: str, silent_unsupported_fields: bool = True) -> List[str]:
    """
    Reads back the policies of already annotated documents.

    :param content: The annotated YAML documents.
    :param silent_unsupported_fields: Log and drop unknown fields instead of failing.
    :return: The policy text of every workload that carries one.
    """
    return [
        AgentPolicy.decode(policy)
        for doc, text in load_documents(content)
        for policy in from_document(doc, text, silent_unsupported_fields).policies()
    ]
