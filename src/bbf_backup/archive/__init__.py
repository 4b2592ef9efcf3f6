"""Store-only zip packaging of dump directories.

Usage:
    from bbf_backup.archive import pack, unpack
"""

from bbf_backup.archive.packager import pack, unpack

__all__ = ["pack", "unpack"]
