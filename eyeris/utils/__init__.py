"""Utility helpers for the eyeris pipeline."""

from .deadlines import RequestContext
from .imaging import ImageConstraints, ImagePreprocessor, make_thumbnail, prepare_image
from .text import strip_code_fences

__all__ = [
    "ImageConstraints",
    "ImagePreprocessor",
    "RequestContext",
    "make_thumbnail",
    "prepare_image",
    "strip_code_fences",
]
