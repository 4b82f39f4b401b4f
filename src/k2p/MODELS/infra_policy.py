"""
Models for the infra data file: OCI defaults and volume templates supplied by the
infrastructure, independent of any workload.
"""
from typing import Any, Dict, List
from pydantic import BaseModel, ConfigDict, Field
from .oci import OciSpec


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class EmptyDirTemplate(FrozenModel):
    mount_type: str
    mount_source: str
    mount_point: str
    driver: str
    fstype: str
    options: List[str] = []
    source: str = ""


class ConfigMapTemplate(FrozenModel):
    mount_type: str
    mount_source: str
    mount_point: str
    driver: str
    fstype: str
    options: List[str] = []


class VolumeTemplates(FrozenModel):
    empty_dir: EmptyDirTemplate = Field(alias="emptyDir")
    config_map: ConfigMapTemplate = Field(alias="configMap")
    confidential_config_map: ConfigMapTemplate = Field(alias="confidential_configMap")


class SharedFiles(FrozenModel):
    source_path: str


class KataConfig(FrozenModel):
    confidential_guest: bool = False


class InfraPolicyTemplate(FrozenModel):
    """
    Infrastructure defaults merged into every resolved container.
    """
    pause_container: OciSpec
    other_container: OciSpec
    volumes: VolumeTemplates
    shared_files: SharedFiles
    kata_config: KataConfig = Field(default_factory=KataConfig)
    request_defaults: Dict[str, Any] = {}

    @property
    def confidential_guest(self) -> bool:
        return self.kata_config.confidential_guest

    def container_template(self, is_pause_container: bool) -> OciSpec:
        return self.pause_container if is_pause_container else self.other_container
