"""
Handler of Pod documents.
"""
from typing import Optional

from ..exceptions import MalformedFieldError
from ..MODELS.kubernetes import ObjectMeta, PodSpec
from ..MODELS.workloads import PodDocument
from .base import PodTemplateResource


class Pod(PodTemplateResource):
    document_model = PodDocument
    metadata_path = "metadata"

    @property
    def pod_spec(self) -> PodSpec:
        return self.document.spec

    @property
    def pod_metadata(self) -> ObjectMeta:
        return self.document.metadata

    def sandbox_name(self) -> Optional[str]:
        return self.document.metadata.name

    def name_pattern(self) -> str:
        metadata = self.document.metadata
        if metadata.name:
            return f"^{metadata.name}$"
        if metadata.generate_name:
            return f"^{metadata.generate_name}[a-z0-9]{{5}}$"
        raise MalformedFieldError(self.name, "metadata.name", "missing name and generateName")
