"""
Splicing of the encoded policy into a document tree.

The tree is the plain data PyYAML produced: dicts keep their insertion order,
so keys that are not touched here render back where they were.
"""
import logging
from typing import Any, Dict, Optional

from ..exceptions import AnnotationPathError

logger = logging.getLogger(__name__)

POLICY_ANNOTATION = "io.katacontainers.config.agent.policy"
EXEC_COMMANDS_ANNOTATION = "io.katacontainers.config.agent.policyOption.execCommands"


def _metadata(tree: Dict[str, Any], metadata_path: str) -> Dict[str, Any]:
    node = tree
    for segment in metadata_path.split("."):
        if not isinstance(node, dict) or not isinstance(node.get(segment), dict):
            raise AnnotationPathError(metadata_path, segment)
        node = node[segment]
    return node


def add_policy_annotation(tree: Dict[str, Any], metadata_path: str, policy: str) -> None:
    """
    Sets the policy annotation under the metadata mapping at metadata_path.

    :param tree: Document tree, modified in place.
    :param metadata_path: Dotted path of the metadata mapping, e.g. `spec.template.metadata`.
    :param policy: The encoded policy.
    :raises AnnotationPathError: When a segment is missing or is not a mapping.
    """
    metadata = _metadata(tree, metadata_path)

    annotations = metadata.get("annotations")
    if not isinstance(annotations, dict):
        if annotations is not None:
            logger.warning("Replacing non-mapping annotations at %s", metadata_path)
        annotations = {}
        metadata["annotations"] = annotations

    annotations[POLICY_ANNOTATION] = policy


def get_policy_annotation(tree: Dict[str, Any], metadata_path: str) -> Optional[str]:
    """
    Reads the policy annotation back. None when the document carries none.
    """
    annotations = _metadata(tree, metadata_path).get("annotations")
    if not isinstance(annotations, dict):
        return None
    return annotations.get(POLICY_ANNOTATION)


def remove_policy_annotation(annotations: Dict[str, str]) -> Dict[str, str]:
    """
    Returns a copy of the annotations without the policy annotation.
    """
    return {key: value for key, value in annotations.items() if key != POLICY_ANNOTATION}
