"""
Models for the pod level Kubernetes objects the policy is derived from.

Only fields that feed the policy are typed in detail. Everything else is kept
as plain data so that a manifest round-trips, while unknown keys end up in the
model extras and can be reported by the parser.
"""
from typing import Any, ClassVar, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class K8sModel(BaseModel):
    """
    Base for all Kubernetes models. Attributes are snake_case, YAML keys camelCase.
    """
    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)

    # Set to False where unknown keys carry meaning instead of being typos.
    report_extra_fields: ClassVar[bool] = True


class ObjectMeta(K8sModel):
    name: Optional[str] = None
    generate_name: Optional[str] = None
    namespace: Optional[str] = None
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: Optional[int] = None
    creation_timestamp: Optional[Any] = None
    deletion_timestamp: Optional[Any] = None
    owner_references: List[Dict[str, Any]] = []
    finalizers: List[str] = []
    managed_fields: List[Dict[str, Any]] = []


class LabelSelector(K8sModel):
    match_labels: Dict[str, str] = {}
    match_expressions: List[Dict[str, Any]] = []


class ObjectFieldSelector(K8sModel):
    field_path: str
    api_version: Optional[str] = None


class ResourceFieldSelector(K8sModel):
    resource: str
    container_name: Optional[str] = None
    divisor: Optional[Any] = None


class KeySelector(K8sModel):
    """Selects a key of a ConfigMap or a Secret."""
    key: str
    name: Optional[str] = None
    optional: Optional[bool] = None


class EnvVarSource(K8sModel):
    field_ref: Optional[ObjectFieldSelector] = None
    resource_field_ref: Optional[ResourceFieldSelector] = None
    config_map_key_ref: Optional[KeySelector] = None
    secret_key_ref: Optional[KeySelector] = None


class EnvVar(K8sModel):
    name: str
    value: Optional[str] = None
    value_from: Optional[EnvVarSource] = None


class LocalObjectReference(K8sModel):
    name: Optional[str] = None
    optional: Optional[bool] = None


class EnvFromSource(K8sModel):
    prefix: Optional[str] = None
    config_map_ref: Optional[LocalObjectReference] = None
    secret_ref: Optional[LocalObjectReference] = None


class VolumeMount(K8sModel):
    """
    A mount of a pod volume into a container.
    """
    name: str
    mount_path: str
    sub_path: Optional[str] = None
    sub_path_expr: Optional[str] = None
    read_only: Optional[bool] = None
    mount_propagation: Optional[str] = None
    recursive_read_only: Optional[str] = None


class Capabilities(K8sModel):
    add: List[str] = []
    drop: List[str] = []


class SecurityContext(K8sModel):
    privileged: Optional[bool] = None
    read_only_root_filesystem: Optional[bool] = None
    run_as_user: Optional[int] = None
    run_as_group: Optional[int] = None
    run_as_non_root: Optional[bool] = None
    allow_privilege_escalation: Optional[bool] = None
    capabilities: Optional[Capabilities] = None
    se_linux_options: Optional[Dict[str, Any]] = None
    seccomp_profile: Optional[Dict[str, Any]] = None
    app_armor_profile: Optional[Dict[str, Any]] = None
    windows_options: Optional[Dict[str, Any]] = None
    proc_mount: Optional[str] = None


class PodSecurityContext(K8sModel):
    run_as_user: Optional[int] = None
    run_as_group: Optional[int] = None
    run_as_non_root: Optional[bool] = None
    fs_group: Optional[int] = None
    fs_group_change_policy: Optional[str] = None
    supplemental_groups: List[int] = []
    supplemental_groups_policy: Optional[str] = None
    se_linux_options: Optional[Dict[str, Any]] = None
    seccomp_profile: Optional[Dict[str, Any]] = None
    app_armor_profile: Optional[Dict[str, Any]] = None
    windows_options: Optional[Dict[str, Any]] = None
    sysctls: List[Dict[str, Any]] = []


class ExecAction(K8sModel):
    command: List[str] = []


class Probe(K8sModel):
    exec_action: Optional[ExecAction] = Field(default=None, alias="exec")
    http_get: Optional[Dict[str, Any]] = None
    tcp_socket: Optional[Dict[str, Any]] = None
    grpc: Optional[Dict[str, Any]] = None
    initial_delay_seconds: Optional[int] = None
    period_seconds: Optional[int] = None
    timeout_seconds: Optional[int] = None
    success_threshold: Optional[int] = None
    failure_threshold: Optional[int] = None
    termination_grace_period_seconds: Optional[int] = None


class Container(K8sModel):
    """
    A container declared by the workload, or one added by the infrastructure.
    """
    name: str
    image: str
    command: Optional[List[str]] = None
    args: Optional[List[str]] = None
    working_dir: Optional[str] = None
    env: List[EnvVar] = []
    env_from: List[EnvFromSource] = []
    ports: List[Dict[str, Any]] = []
    resources: Optional[Dict[str, Any]] = None
    resize_policy: List[Dict[str, Any]] = []
    restart_policy: Optional[str] = None
    volume_mounts: List[VolumeMount] = []
    volume_devices: List[Dict[str, Any]] = []
    liveness_probe: Optional[Probe] = None
    readiness_probe: Optional[Probe] = None
    startup_probe: Optional[Probe] = None
    lifecycle: Optional[Dict[str, Any]] = None
    termination_message_path: Optional[str] = None
    termination_message_policy: Optional[str] = None
    image_pull_policy: Optional[str] = None
    security_context: Optional[SecurityContext] = None
    stdin: Optional[bool] = None
    stdin_once: Optional[bool] = None
    tty: Optional[bool] = None

    # Filled from the exec commands policy option, never read from YAML.
    allowed_commands: List[str] = Field(default=[], exclude=True)

    @property
    def has_command(self) -> bool:
        return self.command is not None

    @property
    def has_args(self) -> bool:
        return self.args is not None

    @property
    def privileged(self) -> bool:
        return bool(self.security_context and self.security_context.privileged)

    @property
    def read_only_root_filesystem(self) -> bool:
        return bool(self.security_context and self.security_context.read_only_root_filesystem)

    def probe_commands(self) -> List[str]:
        """Commands of the exec probes, each joined into a single string."""
        commands = []
        for probe in (self.liveness_probe, self.readiness_probe, self.startup_probe):
            if probe and probe.exec_action and probe.exec_action.command:
                commands.append(" ".join(probe.exec_action.command))
        return commands


class KeyToPath(K8sModel):
    key: str
    path: str
    mode: Optional[int] = None


class EmptyDirVolumeSource(K8sModel):
    medium: Optional[str] = None
    size_limit: Optional[Any] = None


class HostPathVolumeSource(K8sModel):
    path: str
    type: Optional[str] = None


class PersistentVolumeClaimVolumeSource(K8sModel):
    claim_name: str
    read_only: Optional[bool] = None


class AzureFileVolumeSource(K8sModel):
    secret_name: str
    share_name: str
    read_only: Optional[bool] = None


class ConfigMapVolumeSource(K8sModel):
    name: Optional[str] = None
    items: List[KeyToPath] = []
    default_mode: Optional[int] = None
    optional: Optional[bool] = None


class SecretVolumeSource(K8sModel):
    secret_name: Optional[str] = None
    items: List[KeyToPath] = []
    default_mode: Optional[int] = None
    optional: Optional[bool] = None


class ProjectedVolumeSource(K8sModel):
    sources: List[Dict[str, Any]] = []
    default_mode: Optional[int] = None


class DownwardAPIVolumeSource(K8sModel):
    items: List[Dict[str, Any]] = []
    default_mode: Optional[int] = None


class Volume(K8sModel):
    """
    A pod volume. Exactly one source is populated.

    Unknown keys are kept as extras: they name volume sources the resolver does
    not support, and are reported as such when the volume is mounted.
    """
    report_extra_fields: ClassVar[bool] = False

    SOURCE_FIELDS: ClassVar[Dict[str, str]] = {
        "empty_dir": "emptyDir",
        "host_path": "hostPath",
        "persistent_volume_claim": "persistentVolumeClaim",
        "azure_file": "azureFile",
        "config_map": "configMap",
        "secret": "secret",
        "projected": "projected",
        "downward_api": "downwardAPI",
    }

    name: str
    empty_dir: Optional[EmptyDirVolumeSource] = None
    host_path: Optional[HostPathVolumeSource] = None
    persistent_volume_claim: Optional[PersistentVolumeClaimVolumeSource] = None
    azure_file: Optional[AzureFileVolumeSource] = None
    config_map: Optional[ConfigMapVolumeSource] = None
    secret: Optional[SecretVolumeSource] = None
    projected: Optional[ProjectedVolumeSource] = None
    downward_api: Optional[DownwardAPIVolumeSource] = Field(default=None, alias="downwardAPI")

    @model_validator(mode="after")
    def _single_source(self) -> "Volume":
        populated = [key for attr, key in self.SOURCE_FIELDS.items() if getattr(self, attr) is not None]
        populated.extend(self.model_extra or {})
        if len(populated) > 1:
            raise ValueError(f"volume {self.name!r} has more than one source: {', '.join(populated)}")
        return self

    @property
    def source_kind(self) -> Optional[str]:
        """The YAML key of the populated volume source, known or not."""
        for attr, key in self.SOURCE_FIELDS.items():
            if getattr(self, attr) is not None:
                return key
        extra = self.model_extra or {}
        for key in extra:
            return key
        return None


class PodSpec(K8sModel):
    containers: List[Container]
    init_containers: List[Container] = []
    volumes: List[Volume] = []
    restart_policy: Optional[str] = None
    termination_grace_period_seconds: Optional[int] = None
    active_deadline_seconds: Optional[int] = None
    dns_policy: Optional[str] = None
    dns_config: Optional[Dict[str, Any]] = None
    node_selector: Dict[str, str] = {}
    node_name: Optional[str] = None
    service_account_name: Optional[str] = None
    service_account: Optional[str] = None
    automount_service_account_token: Optional[bool] = None
    host_network: bool = False
    host_pid: Optional[bool] = Field(default=None, alias="hostPID")
    host_ipc: Optional[bool] = Field(default=None, alias="hostIPC")
    host_users: Optional[bool] = None
    share_process_namespace: Optional[bool] = None
    security_context: Optional[PodSecurityContext] = None
    image_pull_secrets: List[Dict[str, Any]] = []
    hostname: Optional[str] = None
    subdomain: Optional[str] = None
    set_hostname_as_fqdn: Optional[bool] = Field(default=None, alias="setHostnameAsFQDN")
    host_aliases: List[Dict[str, Any]] = []
    affinity: Optional[Dict[str, Any]] = None
    tolerations: List[Dict[str, Any]] = []
    topology_spread_constraints: List[Dict[str, Any]] = []
    scheduler_name: Optional[str] = None
    scheduling_gates: List[Dict[str, Any]] = []
    priority_class_name: Optional[str] = None
    priority: Optional[int] = None
    preemption_policy: Optional[str] = None
    runtime_class_name: Optional[str] = None
    enable_service_links: Optional[bool] = None
    readiness_gates: List[Dict[str, Any]] = []
    overhead: Optional[Dict[str, Any]] = None
    resource_claims: List[Dict[str, Any]] = []
    os: Optional[Dict[str, Any]] = None


class PodTemplateSpec(K8sModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: PodSpec
