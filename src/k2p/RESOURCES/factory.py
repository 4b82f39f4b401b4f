"""
Creation of resource handlers from YAML documents, by kind.
"""
import logging
from typing import Any, Dict, Optional, Type

from ..exceptions import MalformedFieldError, UnsupportedResourceKindError
from .base import K8sResource
from .config_objects import ConfigMap, Secret
from .controllers import DaemonSet, Deployment, Job, ReplicaSet, ReplicationController, StatefulSet
from .list_resource import ListResource
from .no_policy import NoPolicyResource
from .pod import Pod

logger = logging.getLogger(__name__)

RESOURCE_KINDS: Dict[str, Type[K8sResource]] = {
    "ConfigMap": ConfigMap,
    "DaemonSet": DaemonSet,
    "Deployment": Deployment,
    "Job": Job,
    "List": ListResource,
    "Pod": Pod,
    "ReplicaSet": ReplicaSet,
    "ReplicationController": ReplicationController,
    "Secret": Secret,
    "StatefulSet": StatefulSet,
}

NO_POLICY_KINDS = frozenset({
    "ClusterRole",
    "ClusterRoleBinding",
    "LimitRange",
    "Namespace",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "PriorityClass",
    "ResourceQuota",
    "Role",
    "RoleBinding",
    "Service",
    "ServiceAccount",
})


def from_document(
    doc: Any,
    text: Optional[str] = None,
    silent_unsupported_fields: bool = False,
) -> K8sResource:
    """
    Creates the handler of a document.

    :param doc: The document tree.
    :param text: The document text, kept for documents passed through unchanged.
    :param silent_unsupported_fields: Log and drop unknown fields instead of failing.
    :raises MalformedFieldError: If the document has no kind or apiVersion.
    :raises UnsupportedResourceKindError: If no handler exists for the kind.
    """
    if not isinstance(doc, dict):
        raise MalformedFieldError("document", "<root>", "not a mapping")
    for field in ("apiVersion", "kind"):
        if not doc.get(field):
            raise MalformedFieldError("document", field, "missing field")

    kind = doc["kind"]
    if not isinstance(kind, str):
        raise MalformedFieldError("document", "kind", "not a string")

    if kind in NO_POLICY_KINDS:
        logger.debug("No policy for %s documents", kind)
        return NoPolicyResource(doc, text, silent_unsupported_fields)

    handler = RESOURCE_KINDS.get(kind)
    if handler is None:
        raise UnsupportedResourceKindError(kind)

    logger.debug("Handling %s document", kind)
    return handler(doc, text, silent_unsupported_fields)
