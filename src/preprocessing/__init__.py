"""
Preprocessing: frames in, fixed-shape model tensors out.
"""

from .buffer_pool import TensorPool
from .preprocessor import Preprocessor
from .tensor import LetterboxTransform, Tensor

__all__ = ["TensorPool", "Preprocessor", "LetterboxTransform", "Tensor"]
