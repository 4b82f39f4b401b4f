"""
Resolution of the process a container is allowed to start.

Precedence: the workload YAML first, then the image configuration, then the
infra template. Lists are merged by appending only the entries not already present.
"""
import logging
from typing import Dict, List, Optional

from ..exceptions import ImageResolutionError, MalformedFieldError
from ..MODELS.image_metadata import ImageConfig
from ..MODELS.kubernetes import Container, EnvVar, PodSecurityContext
from ..MODELS.oci import Process

logger = logging.getLogger(__name__)


def add_missing(src: List, dest: List) -> None:
    """
    Appends the entries of src that dest does not contain yet.
    """
    for item in src:
        if item not in dest:
            dest.append(item)


def apply_capabilities(process: Process, container: Container) -> None:
    """
    Applies securityContext.capabilities add/drop to the default capability sets.
    Privileged containers keep the full privileged set.
    """
    context = container.security_context
    if container.privileged or not context or not context.capabilities or not process.capabilities:
        return

    caps = process.capabilities
    drop = {_cap_name(c) for c in context.capabilities.drop}
    add = [_cap_name(c) for c in context.capabilities.add]

    for field in ("bounding", "effective", "permitted"):
        current = getattr(caps, field)
        if "CAP_ALL" in drop:
            current = []
        else:
            current = [c for c in current if c not in drop]
        add_missing(add, current)
        setattr(caps, field, current)


def _cap_name(name: str) -> str:
    name = name.upper()
    return name if name.startswith("CAP_") else "CAP_" + name


class EnvResolver:
    """
    Turns declared environment variables into policy env entries.
    """

    def __init__(
        self,
        namespace: str,
        config_maps: Optional[Dict[str, Dict[str, str]]] = None,
        secrets: Optional[Dict[str, Dict[str, str]]] = None,
        service_account: Optional[str] = None,
        labels: Optional[Dict[str, str]] = None,
        annotations: Optional[Dict[str, str]] = None,
    ):
        self.namespace = namespace
        self.config_maps = config_maps or {}
        self.secrets = secrets or {}
        self.service_account = service_account or "default"
        self.labels = labels or {}
        self.annotations = annotations or {}

    def resolve(self, container: Container, resource: str) -> List[str]:
        """
        :param container: The container whose env and envFrom are resolved.
        :param resource: Name of the owning resource, used in error messages.
        :return: env entries in `NAME=value` form, envFrom first as the kubelet does.
        """
        env: List[str] = []

        for index, source in enumerate(container.env_from):
            prefix = source.prefix or ""
            if source.config_map_ref is not None:
                ref, store, field = source.config_map_ref, self.config_maps, "configMapRef"
            elif source.secret_ref is not None:
                ref, store, field = source.secret_ref, self.secrets, "secretRef"
            else:
                raise MalformedFieldError(resource, f"{container.name}.envFrom[{index}]", "empty env source")

            data = store.get(ref.name or "")
            if data is None:
                if ref.optional:
                    continue
                raise MalformedFieldError(
                    resource, f"{container.name}.envFrom[{index}].{field}", f"{ref.name!r} not found")
            for key, value in data.items():
                add_missing([f"{prefix}{key}={value}"], env)

        for var in container.env:
            value = self._value(var, container, resource)
            if value is not None:
                add_missing([f"{var.name}={value}"], env)

        return env

    def _value(self, var: EnvVar, container: Container, resource: str) -> Optional[str]:
        if var.value_from is None:
            return var.value or ""

        source = var.value_from
        field = f"{container.name}.env.{var.name}"

        if source.field_ref is not None:
            return self._field_ref(source.field_ref.field_path, resource, field)

        if source.resource_field_ref is not None:
            ref = source.resource_field_ref
            section, _, name = ref.resource.partition(".")
            declared = (container.resources or {}).get(section, {}) or {}
            if name in declared:
                return str(declared[name])
            raise MalformedFieldError(resource, field, f"resourceFieldRef to undeclared {ref.resource}")

        for ref, store, kind in (
            (source.config_map_key_ref, self.config_maps, "configMapKeyRef"),
            (source.secret_key_ref, self.secrets, "secretKeyRef"),
        ):
            if ref is None:
                continue
            data = store.get(ref.name or "", {})
            if ref.key in data:
                return data[ref.key]
            if ref.optional:
                logger.debug("Skipping optional %s %s/%s", kind, ref.name, ref.key)
                return None
            raise MalformedFieldError(resource, field, f"{kind} {ref.name}/{ref.key} not found")

        raise MalformedFieldError(resource, field, "empty valueFrom")

    def _field_ref(self, path: str, resource: str, field: str) -> str:
        placeholders = {
            "metadata.name": "$(sandbox-name)",
            "metadata.namespace": self.namespace,
            "metadata.uid": "$(pod-uid)",
            "spec.nodeName": "$(node-name)",
            "spec.serviceAccountName": self.service_account,
            "status.hostIP": "$(host-ip)",
            "status.hostIPs": "$(host-ip)",
            "status.podIP": "$(pod-ip)",
            "status.podIPs": "$(pod-ip)",
        }
        if path in placeholders:
            return placeholders[path]

        for prefix, values in (("metadata.labels", self.labels), ("metadata.annotations", self.annotations)):
            if path.startswith(prefix + "['") and path.endswith("']"):
                key = path[len(prefix) + 2:-2]
                if key in values:
                    return values[key]

        raise MalformedFieldError(resource, field, f"unsupported fieldRef {path}")


def resolve_yaml_process(
    process: Process,
    container: Container,
    pod_security_context: Optional[PodSecurityContext],
    env: List[str],
) -> None:
    """
    Applies the fields declared in the workload YAML.
    """
    process.args = list(container.command or []) + list(container.args or [])
    process.env = list(env)

    uid, gid = yaml_user(container, pod_security_context)
    if uid is not None:
        process.user.uid = uid
    if gid is not None:
        process.user.gid = gid

    if pod_security_context:
        add_missing(pod_security_context.supplemental_groups, process.user.additional_gids)
        if pod_security_context.fs_group is not None:
            add_missing([pod_security_context.fs_group], process.user.additional_gids)

    if container.tty is not None:
        process.terminal = container.tty
    if container.working_dir:
        process.cwd = container.working_dir

    apply_capabilities(process, container)


def yaml_user(container: Container, pod_security_context: Optional[PodSecurityContext]):
    """
    The (uid, gid) declared by the container, falling back to the pod. None when unset.
    """
    uid = gid = None
    for context in (container.security_context, pod_security_context):
        if context is None:
            continue
        if uid is None:
            uid = context.run_as_user
        if gid is None:
            gid = context.run_as_group
    return uid, gid


def resolve_image_process(
    process: Process,
    config: ImageConfig,
    container: Container,
    pod_security_context: Optional[PodSecurityContext],
) -> None:
    """
    Applies the image configuration where the YAML left a field unset.
    """
    logger.debug("Getting process fields from the image config of %s", container.image)

    if config.entrypoint:
        if container.has_command:
            logger.debug("Ignoring image Entrypoint because YAML specified the container command")
        else:
            process.args = list(config.entrypoint) + process.args

    if container.has_command:
        logger.debug("Ignoring image Cmd because YAML specified the container command")
    elif container.has_args:
        logger.debug("Ignoring image Cmd because YAML specified the container args")
    elif config.cmd:
        process.args.extend(config.cmd)

    add_missing(config.env or [], process.env)

    yaml_uid, yaml_gid = yaml_user(container, pod_security_context)
    if config.user:
        image_uid, image_gid = parse_image_user(config.user, container.image)
        if yaml_uid is None:
            process.user.uid = image_uid
        if yaml_gid is None and image_gid is not None:
            process.user.gid = image_gid

    if container.tty is None and config.tty is not None:
        process.terminal = config.tty

    if not container.working_dir and config.working_dir:
        process.cwd = config.working_dir


def parse_image_user(user: str, image: str):
    """
    Parses an image `User` of the form uid[:gid].

    :raises ImageResolutionError: If a part is not numeric, e.g. a user name.
    """
    parts = user.split(":")
    for part in parts[:2]:
        if not part.isdigit():
            raise ImageResolutionError(image, f"non-numeric User {user!r} in the image config")
    uid = int(parts[0])
    gid = int(parts[1]) if len(parts) > 1 else None
    return uid, gid


def resolve_infra_process(process: Process, infra_process: Optional[Process]) -> None:
    """
    Applies the infra template process. UID and GID only replace unset (zero) values.
    """
    if infra_process is None:
        return

    if process.user.uid == 0:
        process.user.uid = infra_process.user.uid
    if process.user.gid == 0:
        process.user.gid = infra_process.user.gid

    add_missing(infra_process.user.additional_gids, process.user.additional_gids)
    if not process.user.username:
        process.user.username = infra_process.user.username

    add_missing(infra_process.args, process.args)
    add_missing(infra_process.env, process.env)
    logger.debug("Resolved args = %s, env = %s", process.args, process.env)
