"""cloudsync: keep a directory mirrored on a storage server over UDP.

The client ships files as checksummed chunks and the server writes each one
at its block offset, so lost, duplicated or reordered datagrams never corrupt
what has already arrived. Deletions travel as plain-text commands.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
