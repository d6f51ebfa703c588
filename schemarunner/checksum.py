"""File and string checksums."""

import hashlib
from pathlib import Path
from typing import Union

import aiofiles

CHUNK_SIZE = 64 * 1024
SUPPORTED_ALGORITHMS = ("md5", "sha256")


class ChecksumService:
    """Computes md5 or sha256 hex digests."""

    def __init__(self, algorithm: str = "sha256"):
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported checksum algorithm: {algorithm}")
        self.algorithm = algorithm

    def calculate_for_string(self, content: str) -> str:
        return hashlib.new(self.algorithm, content.encode("utf-8")).hexdigest()

    async def calculate_for_file(self, path: Union[str, Path]) -> str:
        digest = hashlib.new(self.algorithm)
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
        return digest.hexdigest()
