"""Text and path normalization: sanitizer, transformer, comparer, globs."""
from .sanitizer import TextSanitizer
from .path_transformer import PathTransformer, PathTransformKind
from .path_comparer import PathComparer
from .path_matcher import PathMatcher

__all__ = [
    "TextSanitizer",
    "PathTransformer",
    "PathTransformKind",
    "PathComparer",
    "PathMatcher",
]
