"""Command-line prediction with a saved dlkit model."""

import argparse
import logging
import sys
from typing import List, Optional, Tuple

import numpy as np

from ..core.exceptions import DLKitError
from ..core.serialization import read_config
from ..inference import InferenceModel
from ..preprocessing import ConvertToFloatArray, LoadImage, Pipeline, Rescale, Resize


def _input_dims(model_dir: str) -> Tuple[int, ...]:
    config = read_config(model_dir)
    first = config['config']['layers'][0]['config']
    return tuple(first['dims'])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Classify images with a model saved by Sequential.save()",
        prog="dlkit-predict"
    )
    parser.add_argument("model_dir", help="Saved model directory")
    parser.add_argument("images", nargs="+", help="Image files to classify")
    parser.add_argument("--scale", type=float, default=255.0,
                        help="Divide pixel values by this number (default: 255)")
    parser.add_argument("--softly", action="store_true",
                        help="Print the full output vector instead of the class index")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    try:
        dims = _input_dims(args.model_dir)
        if len(dims) != 3:
            print(f"Error: model input {dims} is not an image shape", file=sys.stderr)
            return 1
        height, width, channels = dims
        pipeline = Pipeline(LoadImage(channels), Resize(height, width),
                            ConvertToFloatArray(), Rescale(args.scale))

        with InferenceModel.load(args.model_dir) as model:
            model.reshape(*dims)
            for path in args.images:
                data = pipeline.apply(path)
                if args.softly:
                    values = np.array2string(model.predict_softly(data), precision=4)
                    print(f"{path}: {values}")
                else:
                    print(f"{path}: {model.predict(data)}")
    except (DLKitError, OSError, ValueError, KeyError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
