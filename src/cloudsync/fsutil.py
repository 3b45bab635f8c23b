from __future__ import annotations

import os

from .errors import FilesystemError


def safe_join(directory: str | os.PathLike[str], file_name: str) -> str:
    """Join a bare file name received off the wire onto ``directory``.

    Only plain names are accepted; anything that could escape the directory
    raises FilesystemError.
    """
    if (
        not file_name
        or file_name in (".", "..")
        or os.path.isabs(file_name)
        or "/" in file_name
        or (os.altsep and os.altsep in file_name)
        or os.sep in file_name
        or "\x00" in file_name
    ):
        raise FilesystemError(file_name, "resolve", "not a plain file name")
    return os.path.join(directory, file_name)
