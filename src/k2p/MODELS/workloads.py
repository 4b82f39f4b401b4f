"""
Typed views of the top level Kubernetes documents k2p understands.
"""
from typing import Any, Dict, List, Optional
from pydantic import Field
from .kubernetes import K8sModel, LabelSelector, ObjectMeta, PodSpec, PodTemplateSpec


class Document(K8sModel):
    """
    Common header of every Kubernetes document.
    """
    api_version: str
    kind: str
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    status: Optional[Dict[str, Any]] = None


class PodDocument(Document):
    spec: PodSpec


class DeploymentSpec(K8sModel):
    template: PodTemplateSpec
    replicas: Optional[int] = None
    selector: Optional[LabelSelector] = None
    strategy: Optional[Dict[str, Any]] = None
    min_ready_seconds: Optional[int] = None
    revision_history_limit: Optional[int] = None
    progress_deadline_seconds: Optional[int] = None
    paused: Optional[bool] = None


class DeploymentDocument(Document):
    spec: DeploymentSpec


class DaemonSetSpec(K8sModel):
    template: PodTemplateSpec
    selector: Optional[LabelSelector] = None
    update_strategy: Optional[Dict[str, Any]] = None
    min_ready_seconds: Optional[int] = None
    revision_history_limit: Optional[int] = None


class DaemonSetDocument(Document):
    spec: DaemonSetSpec


class StatefulSetSpec(K8sModel):
    template: PodTemplateSpec
    service_name: Optional[str] = None
    replicas: Optional[int] = None
    selector: Optional[LabelSelector] = None
    pod_management_policy: Optional[str] = None
    update_strategy: Optional[Dict[str, Any]] = None
    revision_history_limit: Optional[int] = None
    min_ready_seconds: Optional[int] = None
    volume_claim_templates: List[Dict[str, Any]] = []
    persistent_volume_claim_retention_policy: Optional[Dict[str, Any]] = None
    ordinals: Optional[Dict[str, Any]] = None


class StatefulSetDocument(Document):
    spec: StatefulSetSpec


class JobSpec(K8sModel):
    template: PodTemplateSpec
    parallelism: Optional[int] = None
    completions: Optional[int] = None
    completion_mode: Optional[str] = None
    active_deadline_seconds: Optional[int] = None
    backoff_limit: Optional[int] = None
    backoff_limit_per_index: Optional[int] = None
    max_failed_indexes: Optional[int] = None
    selector: Optional[LabelSelector] = None
    manual_selector: Optional[bool] = None
    ttl_seconds_after_finished: Optional[int] = None
    suspend: Optional[bool] = None
    pod_failure_policy: Optional[Dict[str, Any]] = None
    pod_replacement_policy: Optional[str] = None
    success_policy: Optional[Dict[str, Any]] = None


class JobDocument(Document):
    spec: JobSpec


class ReplicaSetSpec(K8sModel):
    template: PodTemplateSpec
    replicas: Optional[int] = None
    selector: Optional[LabelSelector] = None
    min_ready_seconds: Optional[int] = None


class ReplicaSetDocument(Document):
    spec: ReplicaSetSpec


class ReplicationControllerSpec(K8sModel):
    template: PodTemplateSpec
    replicas: Optional[int] = None
    selector: Dict[str, str] = {}
    min_ready_seconds: Optional[int] = None


class ReplicationControllerDocument(Document):
    spec: ReplicationControllerSpec


class ConfigMapDocument(Document):
    data: Dict[str, str] = {}
    binary_data: Dict[str, str] = {}
    immutable: Optional[bool] = None


class SecretDocument(Document):
    type: Optional[str] = None
    data: Dict[str, str] = {}
    string_data: Dict[str, str] = {}
    immutable: Optional[bool] = None


class ListDocument(K8sModel):
    api_version: str
    kind: str
    items: List[Dict[str, Any]] = []
    metadata: Optional[Dict[str, Any]] = None


class ContainerExecCommands(K8sModel):
    """
    One entry of the exec commands policy option annotation.
    """
    container_name: str
    exec_commands: List[str] = []
