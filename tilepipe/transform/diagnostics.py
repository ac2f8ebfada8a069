"""Runtime dependency diagnostics for the doctor command."""

import importlib.metadata as md
import shutil


EXTERNAL_TOOLS = ("gdal_contour", "ogr2ogr", "tippecanoe")
LIBRARIES = ("numpy", "contourpy", "platformdirs", "tqdm")


def get_tool_info(tool: str) -> dict[str, object]:
    """Return whether an external command is on PATH and where."""
    path = shutil.which(tool)
    return {
        "installed": path is not None,
        "path": path,
    }


def get_library_info(dist_name: str) -> dict[str, object]:
    """Return installation diagnostics for one Python distribution."""
    try:
        version = md.version(dist_name)
    except md.PackageNotFoundError:
        return {
            "installed": False,
            "version": None,
        }
    return {
        "installed": True,
        "version": version,
    }
