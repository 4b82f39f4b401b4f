"""
dm-verity root hash of a layer file.

Format 1 hash tree: sha256, 4096-byte data and hash blocks, the salt prepended
to every hashed block. The returned hex digest is what the guest compares with
the root hash of the layer block device.
"""
import hashlib
import logging
import os
from pathlib import Path
from typing import Iterable, Union

logger = logging.getLogger(__name__)

BLOCK_SIZE = 4096
DIGEST_SIZE = hashlib.sha256().digest_size
ZERO_SALT = bytes(DIGEST_SIZE)


class VerityError(Exception):
    """The file cannot be used as a verity data device."""


def _hash_level(blocks: Iterable[bytes], salt: bytes, block_size: int) -> bytes:
    level = bytearray()
    current = bytearray()
    for block in blocks:
        if len(block) < block_size:
            block = block.ljust(block_size, b"\0")
        current += hashlib.sha256(salt + block).digest()
        if len(current) == block_size:
            level += current
            current = bytearray()
    if current:
        level += current.ljust(block_size, b"\0")
    return bytes(level)


def root_hash(path: Union[str, Path], salt: bytes = ZERO_SALT, block_size: int = BLOCK_SIZE) -> str:
    """
    Computes the dm-verity root hash of a file.

    :param path: The data file, usually a decompressed layer tar.
    :param salt: Salt prepended to every block before hashing.
    :param block_size: Data and hash block size.
    :return: The root hash as lowercase hex.
    :raises VerityError: If the file is smaller than one block.
    """
    size = os.path.getsize(path)
    if size < block_size:
        raise VerityError(f"Block device {path} is too small: {size}")

    logger.info("Calculating dm-verity root hash of %s", path)
    with open(path, "rb") as f:
        level = _hash_level(iter(lambda: f.read(block_size), b""), salt, block_size)

    while len(level) > block_size:
        blocks = (level[i:i + block_size] for i in range(0, len(level), block_size))
        level = _hash_level(blocks, salt, block_size)

    return hashlib.sha256(salt + level).hexdigest()
