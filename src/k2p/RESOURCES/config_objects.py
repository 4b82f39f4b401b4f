"""
Handlers of ConfigMap and Secret documents.

They have no policy of their own: their data is registered with the agent
policy, where env resolution of the other documents of the run can find it.
"""
import base64
import binascii
import logging
from typing import Dict

from ..exceptions import MalformedFieldError
from ..MODELS.workloads import ConfigMapDocument, SecretDocument
from ..PARSERS.manifest_parser import parse_model
from .no_policy import NoPolicyResource

logger = logging.getLogger(__name__)


class ConfigMap(NoPolicyResource):

    def __init__(self, doc, text=None, silent_unsupported_fields=False):
        super().__init__(doc, text, silent_unsupported_fields)
        self.document = parse_model(ConfigMapDocument, doc, self.name, silent_unsupported_fields)

    def data(self) -> Dict[str, str]:
        if self.document.binary_data:
            logger.debug("%s: binaryData is not used for env resolution", self.name)
        return dict(self.document.data)

    def register(self, agent_policy) -> None:
        if self.document.metadata.name:
            agent_policy.add_config_map(self.document.metadata.name, self.data())


class Secret(NoPolicyResource):

    def __init__(self, doc, text=None, silent_unsupported_fields=False):
        super().__init__(doc, text, silent_unsupported_fields)
        self.document = parse_model(SecretDocument, doc, self.name, silent_unsupported_fields)

    def data(self) -> Dict[str, str]:
        """
        Decoded `data` values, overridden by `stringData` values. Binary values
        cannot be env values and are left out.
        """
        values = {}
        for key, value in self.document.data.items():
            try:
                decoded = base64.b64decode(value, validate=True)
            except binascii.Error as e:
                raise MalformedFieldError(self.name, f"data.{key}", f"invalid base64 value: {e}") from e
            try:
                values[key] = decoded.decode("utf-8")
            except UnicodeDecodeError:
                logger.debug("%s: skipping binary value of data.%s", self.name, key)
        values.update(self.document.string_data)
        return values

    def register(self, agent_policy) -> None:
        if self.document.metadata.name:
            agent_policy.add_secret(self.document.metadata.name, self.data())
