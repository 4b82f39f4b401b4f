"""
Models for the OCI runtime fields and storage devices that make up a container policy.
"""
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .image_metadata import ImageLayer


class OciModel(BaseModel):
    """
    Base for OCI runtime spec fragments, serialized with OCI (camelCase) keys.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(OciModel):
    uid: int = 0
    gid: int = 0
    additional_gids: List[int] = []
    username: str = ""


class LinuxCapabilities(OciModel):
    bounding: List[str] = []
    effective: List[str] = []
    inheritable: List[str] = []
    permitted: List[str] = []
    ambient: List[str] = []


class Process(OciModel):
    """
    The process a container is allowed to start.
    """
    terminal: bool = False
    user: User = Field(default_factory=User)
    args: List[str] = []
    env: List[str] = []
    cwd: str = ""
    capabilities: Optional[LinuxCapabilities] = None
    no_new_privileges: bool = False


class Mount(OciModel):
    """
    A mount entry. The destination is unique within a container.
    """
    destination: str
    type: str = ""
    source: str = ""
    options: List[str] = []


class Linux(OciModel):
    masked_paths: List[str] = []
    readonly_paths: List[str] = []


class Root(OciModel):
    path: str
    readonly: bool = False


class OciSpec(OciModel):
    """
    A partial OCI spec, as found in the infra data file.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    process: Optional[Process] = None
    mounts: List[Mount] = []
    annotations: Dict[str, str] = {}
    linux: Optional[Linux] = None


class StorageDevice(BaseModel):
    """
    A storage device the agent may mount for a container. Keys stay snake_case.
    """
    driver: str
    driver_options: List[str] = []
    source: str = ""
    fstype: str = ""
    options: List[str] = []
    mount_point: str = ""
    fs_group: Optional[int] = None


class ResolvedContainerPolicy(BaseModel):
    """
    Everything the agent checks for one container. Created once per container and run.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    is_pause_container: bool = False
    process: Process
    mounts: List[Mount] = []
    storages: List[StorageDevice] = []
    image_layers: List[ImageLayer] = []
    annotations: Dict[str, str] = {}
    linux: Linux = Field(default_factory=Linux)
    root: Root
    hostname: str = ""
    exec_commands: List[str] = []
