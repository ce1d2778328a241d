"""Hash helpers used for content and file identifiers."""
import hashlib
from typing import Union

from Crypto.Hash import RIPEMD160


def _to_bytes(data: Union[str, bytes]) -> bytes:
    return data.encode('utf-8') if isinstance(data, str) else data


def sha256(data: Union[str, bytes]) -> bytes:
    """SHA-256 digest."""
    return hashlib.sha256(_to_bytes(data)).digest()


def rmd160(data: Union[str, bytes]) -> bytes:
    """RIPEMD-160 digest."""
    return RIPEMD160.new(_to_bytes(data)).digest()


def rmd160_sha256(data: Union[str, bytes]) -> str:
    """Hex RIPEMD-160 of the SHA-256 of the data (shard hash format)."""
    return rmd160(sha256(data)).hex()


def calculate_file_id(bucket: str, filename: str) -> str:
    """
    Deterministic identifier of a file inside a bucket.

    The bridge derives the same value when the file entry is created, so
    the id can be computed locally to check for an existing upload.

    Args:
        bucket: Bucket id
        filename: Name the file is stored under

    Returns:
        24 character hex id
    """
    return rmd160_sha256(bucket + filename)[:24]
