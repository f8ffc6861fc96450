"""sjk-backup: sjk_backup/__init__.py."""


__version__ = "0.2.0"


def strip_trailing_slash(path: str) -> str:
    """Strip trailing slashes unless path is a local or remote root."""
    if path == "/" or path.endswith(":/"):
        return path
    return path.rstrip("/") or "/"
