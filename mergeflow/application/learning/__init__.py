"""Online meta-model."""

from .meta_model import MetaModel, assess_content_quality, extract_features

__all__ = ["MetaModel", "assess_content_quality", "extract_features"]
