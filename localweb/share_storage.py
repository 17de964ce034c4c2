"""
Share storage: path resolution under the share root and streamed upload
ingestion into the upload directory.
"""

import logging
import re
import uuid
from pathlib import Path
from typing import AsyncIterable, Union

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

# In-flight uploads are written under this prefix and hidden from listings
TEMP_PREFIX = ".localweb-"
TEMP_SUFFIX = ".part"
_TEMP_NAME = re.compile(re.escape(TEMP_PREFIX) + r"[0-9a-f]{32}" + re.escape(TEMP_SUFFIX))

# Bytes per write while ingesting; small body chunks are coalesced up to this
DEFAULT_CHUNK_SIZE = 1024 * 1024


# ============================================================================
# Errors
# ============================================================================

class InvalidPath(ValueError):
    """Client path escapes its base directory or cannot name a target"""


class UploadError(Exception):
    """Upload could not be persisted"""


class DirectoryCreateFailed(UploadError):
    pass


class WriteFailed(UploadError):
    pass


# ============================================================================
# Path Resolution
# ============================================================================

def sanitize_path(path: str) -> str:
    """Collapse a client path lexically, dropping any climb above the root"""
    path = path.replace('\\', '/').lstrip('/')
    parts = []
    for part in path.split('/'):
        if part == '..':
            if parts:
                parts.pop()
        elif part and part != '.':
            parts.append(part)
    return '/'.join(parts)


def resolve_share_path(base: Union[str, Path], client_path: str) -> Path:
    """
    Map a URL-decoded client path to an absolute path under ``base``.

    The lexical pass only absorbs sloppy input; the containment check on
    the resolved path (symlinks followed) is what keeps requests inside.

    Raises:
        InvalidPath: the path contains a NUL byte or resolves outside base
    """
    if '\x00' in client_path:
        raise InvalidPath("Path contains a NUL byte")

    base_dir = Path(base).resolve()
    safe_path = sanitize_path(client_path)
    try:
        candidate = (base_dir / safe_path).resolve()
    except (OSError, RuntimeError) as e:
        raise InvalidPath(f"Cannot resolve {client_path!r}: {e}") from e

    if candidate != base_dir and not candidate.is_relative_to(base_dir):
        logger.warning(f"Rejected path {client_path!r}: resolves outside {base_dir}")
        raise InvalidPath(f"{client_path!r} resolves outside the share")

    return candidate


def resolve_upload_target(upload_dir: Union[str, Path], client_path: str) -> Path:
    """
    Resolve the destination file for an upload.

    Intermediate directories in the client path are kept, so
    ``photos/2024/a.jpg`` lands in ``<upload_dir>/photos/2024/a.jpg``.
    """
    target = resolve_share_path(upload_dir, client_path)
    if target == Path(upload_dir).resolve():
        raise InvalidPath("Upload target needs a file name")
    if target.is_dir():
        raise InvalidPath(f"{client_path!r} is a directory")
    return target


def temp_upload_name() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex}{TEMP_SUFFIX}"


def is_temp_upload(name: str) -> bool:
    """Only names produced by temp_upload_name count as in-flight uploads"""
    return _TEMP_NAME.fullmatch(name) is not None


# ============================================================================
# Upload Ingestion
# ============================================================================

async def ingest_upload(
    target: Path,
    chunks: AsyncIterable[bytes],
    chunk_size: int = DEFAULT_CHUNK_SIZE
) -> int:
    """
    Stream ``chunks`` into ``target`` and return the number of bytes written.

    Data goes to a hidden temp file beside the target which replaces it only
    once the stream has ended, so a failed or abandoned upload never leaves
    a truncated file under the real name. An existing file is overwritten.
    Incoming chunks are buffered and written ``chunk_size`` bytes at a time.

    Raises:
        DirectoryCreateFailed: parent directories could not be created
        WriteFailed: the body could not be written or the client went away
    """
    try:
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
    except OSError as e:
        logger.error(f"Cannot create directory {target.parent}: {e}")
        raise DirectoryCreateFailed(f"Cannot create directory {target.parent.name!r}: {e.strerror or e}") from e

    temp_path = target.parent / temp_upload_name()
    chunk_size = max(1, chunk_size)
    buffer = bytearray()
    written = 0
    try:
        async with aiofiles.open(temp_path, 'wb') as f:
            async for chunk in chunks:
                buffer += chunk
                while len(buffer) >= chunk_size:
                    await f.write(bytes(buffer[:chunk_size]))
                    del buffer[:chunk_size]
                    written += chunk_size
            if buffer:
                await f.write(bytes(buffer))
                written += len(buffer)
        await aiofiles.os.replace(temp_path, target)
    except OSError as e:
        logger.error(f"Upload to {target} failed after {written} bytes: {e}")
        await _discard(temp_path)
        raise WriteFailed(f"Cannot write {target.name!r}: {e.strerror or e}") from e
    except Exception as e:
        # Body stream broke off, e.g. the client disconnected
        logger.warning(f"Upload to {target} interrupted after {written} bytes: {e!r}")
        await _discard(temp_path)
        raise WriteFailed(f"Upload of {target.name!r} interrupted") from e
    except BaseException:
        await _discard(temp_path)
        raise

    logger.info(f"Stored {target} ({written} bytes)")
    return written


async def _discard(path: Path):
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove partial upload {path}: {e}")


def upload_root(share_root: Path, upload_dir: str) -> Path:
    """Absolute upload directory, which must itself sit inside the share"""
    return resolve_share_path(share_root, upload_dir)
