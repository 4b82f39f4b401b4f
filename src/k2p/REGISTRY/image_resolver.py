"""
Image metadata resolution: process defaults and verified layers of container images.
"""
import logging
import zlib
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Union

from pydantic import ValidationError

from ..exceptions import ImageResolutionError
from ..MODELS.image_metadata import ImageConfig, ImageLayer, ImageMetadata
from .image_reference import ImageReference
from .layer_cache import LayerCache
from .registry_client import GZIP_LAYER_TYPES, RegistryClient, RegistryError
from .tar_index import TarIndexError
from .verity import VerityError

logger = logging.getLogger(__name__)


class ImageResolver(Protocol):
    """
    Anything that can turn an image reference into ImageMetadata.
    """

    def resolve(self, image: str, use_cache: bool = False) -> ImageMetadata:
        ...


class RegistryImageResolver:
    """
    Resolves images by pulling their manifest, config and layers from the registry.
    """

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None, client: Optional[RegistryClient] = None):
        """
        :param cache_dir: Root of the layer cache.
        :param client: Registry client, a new anonymous client when None.
        """
        self.client = client or RegistryClient()
        self.cache = LayerCache(cache_dir)

    def resolve(self, image: str, use_cache: bool = False) -> ImageMetadata:
        """
        Pulls the metadata of one image.

        :param image: Image reference as written in the workload.
        :param use_cache: Reuse layer files already present in the cache.
        :return: The image config and its verified layers.
        :raises ImageResolutionError: On a malformed reference or any pull failure.
        """
        try:
            ref = ImageReference.parse(image)
        except ValueError as e:
            raise ImageResolutionError(image, str(e)) from e

        logger.info("Pulling manifest and config for %s", ref.full_name)
        try:
            manifest = self.client.get_manifest(ref)
            config_blob = self.client.get_config(ref, manifest)
            config = ImageConfig.model_validate(config_blob.get("config") or {})
            layers = self._layers(ref, manifest, config_blob, use_cache)
        except (RegistryError, TarIndexError, VerityError, ValidationError, OSError, EOFError, zlib.error) as e:
            raise ImageResolutionError(image, str(e)) from e

        return ImageMetadata(image=image, config=config, layers=layers)

    def _layers(self, ref, manifest, config_blob, use_cache) -> List[ImageLayer]:
        """
        Pairs each gzip layer of the manifest with the diff_id at the same index.
        """
        diff_ids = (config_blob.get("rootfs") or {}).get("diff_ids") or []
        layers = []

        gzip_layers = [layer for layer in manifest.get("layers", []) if layer.get("mediaType") in GZIP_LAYER_TYPES]
        for index, layer in enumerate(gzip_layers):
            if index >= len(diff_ids):
                raise RegistryError("Too many Docker gzip layers")
            layers.append(ImageLayer(
                diff_id=diff_ids[index],
                verity_hash=self.cache.verity_hash(self.client, ref, layer["digest"], use_cache),
            ))

        return layers


def resolve_all(resolver: ImageResolver, images: Sequence[str], use_cache: bool = False) -> List[ImageMetadata]:
    """
    Resolves the images of a workload concurrently, one task per image.

    :return: Metadata in the order of images. The first failure is raised once all tasks ended.
    """
    if not images:
        return []

    with ThreadPoolExecutor(max_workers=len(images)) as executor:
        futures = [executor.submit(resolver.resolve, image, use_cache) for image in images]
    return [future.result() for future in futures]
