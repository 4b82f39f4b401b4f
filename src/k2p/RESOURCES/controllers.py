"""
Handlers of the controllers that create pods from a pod template.
"""
from typing import List

from ..MODELS.kubernetes import PersistentVolumeClaimVolumeSource, Volume
from ..MODELS.workloads import (
    DaemonSetDocument,
    DeploymentDocument,
    JobDocument,
    ReplicaSetDocument,
    ReplicationControllerDocument,
    StatefulSetDocument,
)
from .base import ControllerResource


class Deployment(ControllerResource):
    document_model = DeploymentDocument

    def name_pattern(self) -> str:
        # <deployment>-<replica set hash>-<5 random characters>
        return f"^{self.resource_name}-[a-z0-9]*-[a-z0-9]{{5}}$"


class DaemonSet(ControllerResource):
    document_model = DaemonSetDocument


class StatefulSet(ControllerResource):
    document_model = StatefulSetDocument

    def pod_volumes(self) -> List[Volume]:
        """
        Pod volumes plus one persistent volume claim per volume claim template.
        """
        volumes = super().pod_volumes()
        for template in self.document.spec.volume_claim_templates:
            name = (template.get("metadata") or {}).get("name")
            if name:
                volumes.append(Volume(
                    name=name,
                    persistent_volume_claim=PersistentVolumeClaimVolumeSource(claim_name=name),
                ))
        return volumes


class Job(ControllerResource):
    document_model = JobDocument


class ReplicaSet(ControllerResource):
    document_model = ReplicaSetDocument


class ReplicationController(ControllerResource):
    document_model = ReplicationControllerDocument
