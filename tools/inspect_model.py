#!/usr/bin/env python3
"""
Inspect a model artifact before wiring it into the pipeline.

This utility helps verify that:
1. The model loads through the inference engine
2. It accepts the configured input shape
3. Its output shapes match one of the supported postprocess layouts

Usage:
    python tools/inspect_model.py models/signs.ptl
    python tools/inspect_model.py models/signs.pt --input-size 320 320 --runs 20
"""

import argparse
import os
import sys

# Add project directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

import numpy as np

from inference import InferenceEngine, TorchScriptBackend, TorchScriptConfig
from models.errors import InferenceError, ModelLoadError


def guess_layout(shape):
    """Suggest postprocess settings for a detector output shape."""
    dims = [d for d in shape if d != 1]
    if len(dims) == 1:
        return f"classifier ({dims[0]} classes)"
    if len(dims) != 2:
        return "unknown"

    rows, cols = dims
    transposed = rows < cols
    values = rows if transposed else cols
    return (
        f"yolov8 with {values - 4} classes or yolov5 with {values - 5} classes "
        f"(output_transposed: {str(transposed).lower()})"
    )


def inspect_model(model_path, input_size=(640, 640), channels=3, device="cpu", runs=5):
    width, height = input_size
    engine = InferenceEngine(
        TorchScriptBackend(TorchScriptConfig(device=device)),
        input_shape=(channels, height, width),
        latency_budget_ms=1e9,
    )
    try:
        engine.load(model_path)
    except ModelLoadError as e:
        print(f"❌ {e}")
        return False

    zeros = np.zeros((channels, height, width), dtype=np.float32)
    latencies = []
    try:
        for _ in range(max(1, runs)):
            raw = engine.run(zeros)
            latencies.append(raw.latency_ms)
    except InferenceError as e:
        print(f"❌ {e}")
        return False
    finally:
        engine.unload()

    print(f"✅ Model loaded: {model_path}")
    print(f"   Input: (1, {channels}, {height}, {width}) float32")
    for i, out in enumerate(raw.outputs):
        print(f"   Output {i}: shape={tuple(out.shape)} dtype={out.dtype}")
    print(f"   Suggested layout: {guess_layout(raw.primary.shape)}")
    print(f"   Latency: min={min(latencies):.1f} ms, mean={np.mean(latencies):.1f} ms over {len(latencies)} runs")
    return True


def main():
    parser = argparse.ArgumentParser(description="Inspect a TorchScript model for the sign pipeline")
    parser.add_argument("model", help="Path to .pt/.pth/.ptl model")
    parser.add_argument("--input-size", type=int, nargs=2, default=[640, 640],
                        metavar=("WIDTH", "HEIGHT"))
    parser.add_argument("--channels", type=int, default=3, choices=[1, 3])
    parser.add_argument("--device", default="cpu")
    parser.add_argument("--runs", type=int, default=5)
    args = parser.parse_args()

    ok = inspect_model(args.model, tuple(args.input_size), args.channels, args.device, args.runs)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
