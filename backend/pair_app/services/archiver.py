import asyncio
import os
import tempfile
import zipfile
from pathlib import Path
from typing import List, Union

from pair_app.core.exceptions import IOFailure

# Fixed entry timestamp so repacking identical contents gives identical archives
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
COMPRESS_LEVEL = 9

PathLike = Union[str, Path]


def _collect_files(source: Path, exclude: Path) -> List[Path]:
    files = []
    for root, dirs, names in os.walk(source):
        dirs.sort()
        for name in sorted(names):
            path = Path(root) / name
            if path.resolve() == exclude or name.startswith(".tmp-") or name.endswith(".tmp"):
                continue
            files.append(path)
    return files


def pack(source_dir: PathLike, destination: PathLike) -> Path:
    """
    Zip every file under ``source_dir`` into ``destination``.

    The archive is built in a temp file beside the destination and renamed
    into place, so readers never see a partial archive. Raises IOFailure on
    any filesystem error.
    """
    source = Path(source_dir)
    dest = Path(destination)

    if not source.is_dir():
        raise IOFailure(f"Cannot pack {source}", FileNotFoundError(str(source)))

    tmp_path = None
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=dest.parent, prefix=f".{dest.name}.", suffix=".tmp")
        os.close(fd)

        with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED,
                             compresslevel=COMPRESS_LEVEL) as zf:
            for path in _collect_files(source, dest.resolve()):
                info = zipfile.ZipInfo(path.relative_to(source).as_posix(), date_time=ZIP_EPOCH)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                zf.writestr(info, path.read_bytes(), compresslevel=COMPRESS_LEVEL)

        os.replace(tmp_path, dest)
        tmp_path = None
    except OSError as e:
        raise IOFailure(f"Failed to pack {source} into {dest}", e) from e
    finally:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)

    return dest


async def apack(source_dir: PathLike, destination: PathLike) -> Path:
    return await asyncio.to_thread(pack, source_dir, destination)


def unpack(archive: PathLike, destination_dir: PathLike) -> List[str]:
    """Extract an archive produced by ``pack``; returns the entry names"""
    dest = Path(destination_dir)
    dest.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive) as zf:
            names = zf.namelist()
            zf.extractall(dest)
    except (OSError, zipfile.BadZipFile) as e:
        raise IOFailure(f"Failed to unpack {archive}", e) from e
    return names
