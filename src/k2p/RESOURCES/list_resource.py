"""
Handler of List documents: each item is handled as a document of its own.
"""
import copy
import logging
from typing import Any, Dict, List

from ..exceptions import PolicyConsistencyError
from ..MODELS.workloads import ListDocument
from ..PARSERS.manifest_parser import parse_model
from ..POLICY.agent_policy import AgentPolicy
from ..REGISTRY.image_resolver import ImageResolver
from .base import K8sResource

logger = logging.getLogger(__name__)

# Never part of a base64 encoded policy.
POLICY_DELIMITER = ":"


class ListResource(K8sResource):
    """
    The policy of a List holds one entry per item, joined with POLICY_DELIMITER.
    The entry of a nested List is its own joined policy, base64 encoded.
    """

    def __init__(self, doc, text=None, silent_unsupported_fields=False):
        from .factory import from_document

        super().__init__(doc, text, silent_unsupported_fields)
        self.document = parse_model(ListDocument, doc, self.name, silent_unsupported_fields)
        self.items: List[K8sResource] = [
            from_document(item, silent_unsupported_fields=silent_unsupported_fields)
            for item in self.document.items
        ]

    def register(self, agent_policy) -> None:
        for item in self.items:
            item.register(agent_policy)

    def init(self, resolver: ImageResolver, use_cache: bool = False) -> None:
        for item in self.items:
            item.init(resolver, use_cache)

    def generate_policy(self, agent_policy) -> str:
        entries = []
        for item in self.items:
            policy = item.generate_policy(agent_policy)
            if isinstance(item, ListResource):
                policy = AgentPolicy.encode(policy)
            entries.append(policy)
        return POLICY_DELIMITER.join(entries)

    def split_policy(self, policy: str) -> List[str]:
        """
        :return: The policy of each item, in item order.
        :raises PolicyConsistencyError: If the policy does not hold one entry per item.
        """
        entries = policy.split(POLICY_DELIMITER) if policy or self.items else []
        if len(entries) != len(self.items):
            raise PolicyConsistencyError(
                f"{self.name}: {len(entries)} policies for {len(self.items)} items"
            )
        return [
            AgentPolicy.decode(entry) if isinstance(item, ListResource) else entry
            for item, entry in zip(self.items, entries)
        ]

    def annotated_tree(self, policy: str) -> Dict[str, Any]:
        tree = copy.deepcopy(self.doc)
        tree["items"] = [
            item.annotated_tree(item_policy)
            for item, item_policy in zip(self.items, self.split_policy(policy))
        ]
        return tree

    def generated_policies(self, policy: str) -> List[str]:
        return [
            generated
            for item, item_policy in zip(self.items, self.split_policy(policy))
            for generated in item.generated_policies(item_policy)
        ]

    def policies(self) -> List[str]:
        return [policy for item in self.items for policy in item.policies()]
