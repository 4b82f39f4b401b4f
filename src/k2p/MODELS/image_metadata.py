"""
Models representing the parts of a container image that end up in a policy.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ImageConfig(BaseModel):
    """
    The `config` section of an image configuration blob.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user: Optional[str] = Field(default=None, alias="User")
    tty: Optional[bool] = Field(default=None, alias="Tty")
    env: Optional[List[str]] = Field(default=None, alias="Env")
    cmd: Optional[List[str]] = Field(default=None, alias="Cmd")
    entrypoint: Optional[List[str]] = Field(default=None, alias="Entrypoint")
    working_dir: Optional[str] = Field(default=None, alias="WorkingDir")


class ImageLayer(BaseModel):
    """
    An image layer: uncompressed digest plus the verified root hash of its contents.
    """
    diff_id: str
    verity_hash: str


class ImageMetadata(BaseModel):
    """
    Process defaults and verified layers of one image.
    """
    image: str
    config: ImageConfig = Field(default_factory=ImageConfig)
    layers: List[ImageLayer] = []
