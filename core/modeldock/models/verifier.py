"""
Validation of local GGUF file selections before they enter the catalog.
"""

import re
from pathlib import Path
from typing import Sequence

from modeldock.models.exceptions import (
    EmptySelectionError,
    FileReadError,
    InvalidFormatError,
)
from modeldock.models.types import VerifiedFiles
from modeldock.utils.logging import logger

GGUF_MAGIC = b"GGUF"

# "-00001-of-00003.gguf" at the end of a shard file name
SHARD_SUFFIX_PATTERN = re.compile(r"-\d{5}-of-\d{5}\.\w+$")


def strip_shard_suffix(filename: str) -> str:
    """Remove a trailing shard suffix, leaving other names unchanged."""
    return SHARD_SUFFIX_PATTERN.sub("", filename)


def read_magic(path: Path, length: int = len(GGUF_MAGIC)) -> bytes:
    """Read the leading bytes of a file without loading the rest."""
    with open(path, "rb") as f:
        return f.read(length)


def verify_local_model(files: Sequence[Path]) -> VerifiedFiles:
    """
    Verify that a selection of files forms a GGUF model.

    Only the first file's header is checked; the remaining files are
    expected to be further shards of the same model.

    Args:
        files: Ordered file paths, first shard first

    Returns:
        VerifiedFiles with the grouped base name and the total size

    Raises:
        EmptySelectionError: No files were given
        InvalidFormatError: First file does not start with the GGUF magic
        FileReadError: A file could not be read
    """
    if not files:
        raise EmptySelectionError("No files selected")

    first = Path(files[0])
    try:
        header = read_magic(first)
        total_size = sum(Path(f).stat().st_size for f in files)
    except OSError as e:
        raise FileReadError(f"Error reading file: {e}") from e

    if header != GGUF_MAGIC:
        raise InvalidFormatError(
            "Not a valid gguf file: not starting with GGUF magic number"
        )

    base_name = strip_shard_suffix(first.name)
    logger.info(f"Verified local model {base_name} ({len(files)} file(s), {total_size} bytes)")
    return VerifiedFiles(base_name=base_name, total_size=total_size)
