"""Transform package exports."""

from tilepipe.transform.array import ArrayContourTransformer
from tilepipe.transform.base import ContourFeature, Transformer, classify_features, line_class
from tilepipe.transform.diagnostics import get_library_info, get_tool_info
from tilepipe.transform.gdal import GdalContourTransformer


_TRANSFORMER_REGISTRY = {
    "gdal": GdalContourTransformer,
    "array": ArrayContourTransformer,
}


def get_transformer(name: str, **kwargs) -> Transformer:
    """Build a registered contour transformer by name."""
    key = str(name).strip().lower()
    assert key in _TRANSFORMER_REGISTRY, f"unsupported transformer='{name}'; expected one of {sorted(_TRANSFORMER_REGISTRY)}"
    return _TRANSFORMER_REGISTRY[key](**kwargs)


__all__ = [
    "ArrayContourTransformer",
    "ContourFeature",
    "GdalContourTransformer",
    "Transformer",
    "classify_features",
    "get_library_info",
    "get_tool_info",
    "get_transformer",
    "line_class",
]
