"""
Handler of the documents that have no workload, and so no policy.
"""
from .base import K8sResource, dump_yaml


class NoPolicyResource(K8sResource):
    """
    Passed through unchanged.
    """

    def generate_policy(self, agent_policy) -> str:
        return ""

    def serialize(self, policy: str) -> str:
        if self.text is not None:
            return self.text
        return dump_yaml(self.doc)
