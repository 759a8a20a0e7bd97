__all__ = ["__version__"]

from importlib.metadata import PackageNotFoundError, version as _pkg_version


def _detect_version() -> str:
    # Installed metadata is the single source of truth for the version
    try:
        return _pkg_version("svcdash")
    except PackageNotFoundError:
        return "0.0.0+dev"


__version__ = _detect_version()
