"""
TorchScript / PyTorch Mobile inference backend.

Loads `.pt`/`.pth` TorchScript archives with torch.jit and `.ptl` lite
interpreter archives (the format bundled with Android apps). PyTorch is
imported lazily so the rest of the pipeline stays importable without it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import numpy as np

from .backend import InferenceBackend


LITE_EXTENSIONS = (".ptl",)


@dataclass(frozen=True)
class TorchScriptConfig:
    device: str = "cpu"
    num_threads: Optional[int] = None


def _to_numpy_list(out: Any) -> List[np.ndarray]:
    """Flatten tensors, tuples, lists and dicts of tensors into numpy arrays."""
    if isinstance(out, (list, tuple)):
        arrays: List[np.ndarray] = []
        for item in out:
            arrays.extend(_to_numpy_list(item))
        return arrays
    if isinstance(out, dict):
        arrays = []
        for key in out:
            arrays.extend(_to_numpy_list(out[key]))
        return arrays
    if hasattr(out, "detach"):
        return [out.detach().cpu().numpy()]
    return [np.asarray(out)]


class TorchScriptBackend(InferenceBackend):
    def __init__(self, cfg: Optional[TorchScriptConfig] = None):
        self.cfg = cfg or TorchScriptConfig()
        self._torch = None
        self._model = None

    def load(self, model_path: str) -> None:
        try:
            import torch  # type: ignore
        except Exception as e:
            raise ImportError(
                "PyTorch is not installed. Install with `pip install torch` "
                "or `pip install .[torch]`."
            ) from e

        if self.cfg.num_threads:
            torch.set_num_threads(self.cfg.num_threads)

        if model_path.lower().endswith(LITE_EXTENSIONS):
            from torch.jit.mobile import _load_for_lite_interpreter  # type: ignore

            model = _load_for_lite_interpreter(model_path, map_location=self.cfg.device)
        else:
            model = torch.jit.load(model_path, map_location=self.cfg.device)
            model.eval()

        self._torch = torch
        self._model = model
        logging.info(f"TorchScript model ready on {self.cfg.device}: {model_path}")

    def run(self, batch: np.ndarray) -> List[np.ndarray]:
        if self._model is None:
            raise RuntimeError("TorchScript model is not loaded")

        torch = self._torch
        with torch.no_grad():
            x = torch.from_numpy(np.ascontiguousarray(batch)).to(self.cfg.device)
            out = self._model(x)
        return _to_numpy_list(out)

    def unload(self) -> None:
        self._model = None
        self._torch = None
