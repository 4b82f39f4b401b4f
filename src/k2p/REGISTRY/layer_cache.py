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
Local layer cache.
Content-addressable storage for compressed layers, decompressed and indexed layers and
their verity root hashes.
"""

import gzip
import logging
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Union

from .image_reference import ImageReference
from .registry_client import RegistryClient
from .tar_index import append_index
from .verity import root_hash

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = "layers_cache"


@dataclass
class LayerFiles:
    """Cache files of one layer. All names derive from the layer digest."""
    compressed: Path
    decompressed: Path
    verity: Path

    def delete(self) -> None:
        for path in (self.compressed, self.decompressed, self.verity):
            path.unlink(missing_ok=True)


class LayerCache:
    """
    Manages the layer cache directory.

    Existing files are only reused when use_cached_files is set; otherwise
    every artifact is created again. Files are never shared between digests, so
    concurrent pulls of different layers never touch the same file.
    """

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the layer cache.

        Args:
            cache_dir: Directory for cache storage. Defaults to ./layers_cache
        """
        self.cache_dir = Path(cache_dir or DEFAULT_CACHE_DIR)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def files(self, digest: str) -> LayerFiles:
        """
        Get the cache file paths of a layer.

        Args:
            digest: Layer digest, e.g. 'sha256:abc...'
        """
        base = self.cache_dir / digest.replace(":", "-")
        return LayerFiles(
            compressed=base.with_name(base.name + ".tar.gz"),
            decompressed=base.with_name(base.name + ".tar"),
            verity=base.with_name(base.name + ".verity"),
        )

    def _lock(self, digest: str) -> threading.Lock:
        # Two containers of a workload may share a layer.
        with self._locks_guard:
            return self._locks.setdefault(digest, threading.Lock())

    def verity_hash(
        self,
        client: RegistryClient,
        ref: ImageReference,
        digest: str,
        use_cached_files: bool = False,
    ) -> str:
        """
        Get the verity root hash of a layer, pulling and decompressing it as needed.

        Args:
            client: Registry client used for pulling the layer blob
            ref: Reference of the image the layer belongs to
            digest: Layer digest from the manifest
            use_cached_files: Reuse files already present in the cache

        Returns:
            The verity root hash, as hex
        """
        files = self.files(digest)

        with self._lock(digest):
            try:
                if use_cached_files and files.verity.exists():
                    logger.info("Using cached file %s", files.verity)
                else:
                    self._create_verity_file(client, ref, digest, files, use_cached_files)
                verity_hash = files.verity.read_text().strip()
            except Exception:
                files.delete()
                raise

        logger.info("dm-verity root hash of %s: %s", digest, verity_hash)
        return verity_hash

    def _create_verity_file(self, client, ref, digest, files, use_cached_files):
        if use_cached_files and files.decompressed.exists():
            logger.info("Using cached file %s", files.decompressed)
        else:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            self._create_decompressed_file(client, ref, digest, files, use_cached_files)

        files.verity.write_text(root_hash(files.decompressed))

    def _create_decompressed_file(self, client, ref, digest, files, use_cached_files):
        if use_cached_files and files.compressed.exists():
            logger.info("Using cached file %s", files.compressed)
        else:
            client.pull_blob(ref, digest, files.compressed)

        logger.info("Decompressing layer %s", digest)
        with gzip.open(files.compressed, "rb") as src, open(files.decompressed, "w+b") as dest:
            shutil.copyfileobj(src, dest)
            logger.info("Adding tarfs index to layer %s", digest)
            append_index(dest)
