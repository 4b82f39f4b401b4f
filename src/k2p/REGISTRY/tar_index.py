"""
File system index appended to a decompressed layer tar.

The guest mounts a layer tar as a read-only tarfs file system. tarfs does not
parse tar headers; it reads this index, written right after the tar data:

- in inode order, the entries of each directory followed by their names, and
  the target of each symlink,
- the inode table, 8-byte aligned, one record per inode starting at inode 1
  (the root directory),
- the super block, alone in the last 512-byte sector of the file.

The indexed file size is a multiple of the 4096-byte verity block, so the root
hash covers the tar data and the index.
"""
import io
import logging
import stat
import struct
import tarfile
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List

logger = logging.getLogger(__name__)

SECTOR_SIZE = 512
BLOCK_SIZE = 4096
ROOT_INO = 1

# mode, flags, mtime bits 32-39, owner, group, mtime bits 0-31, size, offset
INODE = struct.Struct("<HBBIIIQQ")
# ino, name offset, name length, entry type
DIR_ENTRY = struct.Struct("<QQQB7x")
# inode table offset, inode count
SUPER_BLOCK = struct.Struct("<QQ")

OPAQUE_FLAG = 0x1

WHITEOUT_PREFIX = b".wh."
OPAQUE_WHITEOUT = b".wh..wh..opq"

FILE_TYPES = {
    tarfile.REGTYPE: stat.S_IFREG,
    tarfile.AREGTYPE: stat.S_IFREG,
    tarfile.CONTTYPE: stat.S_IFREG,
    tarfile.DIRTYPE: stat.S_IFDIR,
    tarfile.SYMTYPE: stat.S_IFLNK,
    tarfile.CHRTYPE: stat.S_IFCHR,
    tarfile.BLKTYPE: stat.S_IFBLK,
    tarfile.FIFOTYPE: stat.S_IFIFO,
}

# d_type values of directory entries
ENTRY_TYPES = {
    stat.S_IFIFO: 1,
    stat.S_IFCHR: 2,
    stat.S_IFDIR: 4,
    stat.S_IFBLK: 6,
    stat.S_IFREG: 8,
    stat.S_IFLNK: 10,
}


class TarIndexError(ValueError):
    """The layer is not a tar archive tarfs can index."""


@dataclass
class Inode:
    ino: int
    mode: int
    owner: int = 0
    group: int = 0
    mtime: int = 0
    size: int = 0
    offset: int = 0
    flags: int = 0
    target: bytes = b""
    children: Dict[bytes, "Inode"] = field(default_factory=dict)

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    def pack(self) -> bytes:
        return INODE.pack(
            self.mode & 0xFFFF,
            self.flags,
            (self.mtime >> 32) & 0xFF,
            self.owner & 0xFFFFFFFF,
            self.group & 0xFFFFFFFF,
            self.mtime & 0xFFFFFFFF,
            self.size,
            self.offset,
        )


def split_path(name: str) -> List[bytes]:
    """
    Path components of a member name, without empty and `.` components.

    :raises TarIndexError: If the name leaves the layer root.
    """
    parts = [part for part in name.encode("utf-8", "surrogateescape").split(b"/") if part not in (b"", b".")]
    if b".." in parts:
        raise TarIndexError(f"Entry {name!r} leaves the layer root")
    return parts


class IndexBuilder:
    """
    Builds the directory tree of a layer from its tar members, in archive order.
    Later members replace earlier ones with the same path, as when extracting.
    """

    def __init__(self):
        self.inodes: List[Inode] = []
        self.root = self._new_inode(stat.S_IFDIR | 0o755)

    def _new_inode(self, mode: int) -> Inode:
        inode = Inode(ino=len(self.inodes) + ROOT_INO, mode=mode)
        self.inodes.append(inode)
        return inode

    def _directory(self, parts: List[bytes]) -> Inode:
        # Parent directories missing from the archive are created.
        node = self.root
        for part in parts:
            child = node.children.get(part)
            if child is None:
                child = self._new_inode(stat.S_IFDIR | 0o755)
                node.children[part] = child
            elif not child.is_dir:
                raise TarIndexError(f"{b'/'.join(parts).decode(errors='replace')} is not a directory")
            node = child
        return node

    def _lookup(self, name: str) -> Inode:
        node = self.root
        for part in split_path(name):
            node = node.children.get(part)
            if node is None:
                raise TarIndexError(f"Hard link target {name!r} not found")
        return node

    def add(self, member: tarfile.TarInfo) -> None:
        parts = split_path(member.name)
        if not parts:
            if member.isdir():
                self._set_attributes(self.root, member)
            return

        parent = self._directory(parts[:-1])
        name = parts[-1]

        if name == OPAQUE_WHITEOUT:
            parent.flags |= OPAQUE_FLAG
            return
        if name.startswith(WHITEOUT_PREFIX):
            # A 0:0 character device hides the name in the lower layers.
            parent.children[name[len(WHITEOUT_PREFIX):]] = self._new_inode(stat.S_IFCHR)
            return
        if member.islnk():
            parent.children[name] = self._lookup(member.linkname)
            return
        if member.issparse():
            raise TarIndexError(f"Sparse file {member.name!r} is not supported")

        file_type = FILE_TYPES.get(member.type)
        if file_type is None:
            logger.debug("Skipping tar member %s of type %r", member.name, member.type)
            return

        existing = parent.children.get(name)
        if file_type == stat.S_IFDIR and existing is not None and existing.is_dir:
            self._set_attributes(existing, member)
            return

        inode = self._new_inode(file_type)
        self._set_attributes(inode, member)
        if file_type == stat.S_IFREG:
            inode.size = member.size
            inode.offset = member.offset_data
        elif file_type == stat.S_IFLNK:
            inode.target = member.linkname.encode("utf-8", "surrogateescape")
            inode.size = len(inode.target)
        elif file_type in (stat.S_IFCHR, stat.S_IFBLK):
            inode.offset = (member.devmajor << 32) | member.devminor
        parent.children[name] = inode

    @staticmethod
    def _set_attributes(inode: Inode, member: tarfile.TarInfo) -> None:
        inode.mode = stat.S_IFMT(inode.mode) | (member.mode & 0o7777)
        inode.owner = member.uid
        inode.group = member.gid
        inode.mtime = int(member.mtime)

    def build(self, start: int) -> bytes:
        """
        Serializes the index for a file whose tar data ends at start.
        """
        data = bytearray()

        for inode in self.inodes:
            if inode.is_dir:
                names = sorted(inode.children)
                entries_offset = start + len(data)
                name_offset = entries_offset + DIR_ENTRY.size * len(names)
                entries = bytearray()
                name_bytes = bytearray()
                for name in names:
                    child = inode.children[name]
                    entries += DIR_ENTRY.pack(
                        child.ino, name_offset + len(name_bytes), len(name), ENTRY_TYPES[stat.S_IFMT(child.mode)])
                    name_bytes += name
                inode.offset = entries_offset
                inode.size = len(entries)
                data += entries + name_bytes
            elif stat.S_ISLNK(inode.mode):
                inode.offset = start + len(data)
                data += inode.target

        data += bytes(-(start + len(data)) % 8)
        inode_table_offset = start + len(data)
        for inode in self.inodes:
            data += inode.pack()

        data += bytes(-(start + len(data) + SECTOR_SIZE) % BLOCK_SIZE)
        data += SUPER_BLOCK.pack(inode_table_offset, len(self.inodes)).ljust(SECTOR_SIZE, b"\0")
        return bytes(data)


def append_index(f: BinaryIO) -> int:
    """
    Appends the tarfs index to an open, seekable tar file.

    :param f: The decompressed layer, opened for reading and writing.
    :return: The number of inodes in the index.
    :raises TarIndexError: If the file is not a tar archive or cannot be indexed.
    """
    builder = IndexBuilder()

    f.seek(0)
    try:
        with tarfile.open(fileobj=f, mode="r:") as archive:
            for member in archive:
                builder.add(member)
    except tarfile.TarError as e:
        raise TarIndexError(f"Invalid layer tar: {e}") from e

    start = f.seek(0, io.SEEK_END)
    f.write(builder.build(start))
    logger.debug("Appended tar index of %d inodes at offset %d", len(builder.inodes), start)
    return len(builder.inodes)
