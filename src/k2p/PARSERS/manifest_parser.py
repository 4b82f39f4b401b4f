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
Parsers for Kubernetes YAML manifests.
"""
import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Tuple, Type, TypeVar

import yaml
from pydantic import BaseModel, TypeAdapter, ValidationError

from ..exceptions import MalformedFieldError
from ..MODELS.kubernetes import K8sModel
from ..MODELS.workloads import ContainerExecCommands
from ..POLICY.annotations import EXEC_COMMANDS_ANNOTATION

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

DOCUMENT_SEPARATOR = re.compile(r"^---[ \t]*(?:#.*)?$", re.MULTILINE)

_EXEC_COMMANDS = TypeAdapter(List[ContainerExecCommands])


def split_documents(content: str) -> List[str]:
    """
    Splits a YAML stream into the text of its documents.

    :param content: YAML content, documents separated by `---` lines.
    :return: The text of each non-empty document.
    """
    return [chunk for chunk in DOCUMENT_SEPARATOR.split(content) if chunk.strip()]


def load_documents(content: str) -> List[Tuple[Any, str]]:
    """
    Parses a YAML stream.

    :param content: YAML content.
    :return: (data, text) for each document holding data.
    :raises MalformedFieldError: If a document is not valid YAML.
    """
    documents = []
    for index, text in enumerate(split_documents(content)):
        try:
            data = yaml.safe_load(text)
        except (yaml.YAMLError, ValueError) as e:
            # ValueError: well formed scalars that are not valid values, e.g. 2024-13-45
            raise MalformedFieldError(f"document {index}", "yaml", str(e)) from e
        if data is None:
            # Comments only
            continue
        documents.append((data, text))
    logger.debug("Loaded %d YAML documents", len(documents))
    return documents


def _join(path: str, key: Any) -> str:
    return f"{path}.{key}" if path else str(key)


def _collect_unsupported(value: Any, path: str, found: List[Tuple[K8sModel, str, str]]) -> None:
    if isinstance(value, K8sModel):
        if type(value).report_extra_fields:
            for key in value.model_extra or {}:
                found.append((value, key, _join(path, key)))
        for name, field in type(value).model_fields.items():
            if field.exclude:
                continue
            _collect_unsupported(getattr(value, name), _join(path, field.alias or name), found)
    elif isinstance(value, list):
        for index, item in enumerate(value):
            _collect_unsupported(item, f"{path}[{index}]", found)


def parse_model(
    model_cls: Type[ModelT],
    data: Dict[str, Any],
    resource: str,
    silent_unsupported_fields: bool = False,
) -> ModelT:
    """
    Validates a document against its typed model.

    :param model_cls: The pydantic model of the document kind.
    :param data: The document tree.
    :param resource: Resource name, used in error messages.
    :param silent_unsupported_fields: Log and drop unknown fields instead of failing.
    :return: The validated model.
    :raises MalformedFieldError: On invalid values, and on unknown fields unless silenced.
    """
    try:
        model = model_cls.model_validate(data)
    except ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(part) for part in error["loc"]) or model_cls.__name__
        raise MalformedFieldError(resource, field, error["msg"]) from e

    found: List[Tuple[K8sModel, str, str]] = []
    _collect_unsupported(model, "", found)
    for owner, key, path in found:
        if not silent_unsupported_fields:
            raise MalformedFieldError(resource, path)
        logger.warning("%s: ignoring unsupported field %s", resource, path)
        del owner.model_extra[key]

    return model


def parse_exec_commands(annotations: Dict[str, str], resource: str) -> Dict[str, List[str]]:
    """
    Reads the exec commands policy option: base64 encoded JSON of
    `[{"containerName": ..., "execCommands": [...]}]`.

    :return: Allowed exec commands by container name.
    :raises MalformedFieldError: If the annotation cannot be decoded.
    """
    value = annotations.get(EXEC_COMMANDS_ANNOTATION)
    if not value:
        return {}

    field = f"metadata.annotations.{EXEC_COMMANDS_ANNOTATION}"
    try:
        entries = _EXEC_COMMANDS.validate_python(json.loads(base64.b64decode(value, validate=True)))
    except (binascii.Error, ValueError) as e:
        raise MalformedFieldError(resource, field, f"invalid exec commands: {e}") from e

    commands: Dict[str, List[str]] = {}
    for entry in entries:
        commands.setdefault(entry.container_name, []).extend(entry.exec_commands)
    return commands
