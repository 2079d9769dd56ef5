#!/usr/bin/env python3
"""
DeepLab Image Segmentation - Main User Application

This is the main entry point for all user applications in the system.
"""

import sys
import argparse


def main():
    """Main application entry point"""
    parser = argparse.ArgumentParser(
        description="DeepLab Image Segmentation - Main Application",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Available Applications:
  segment          Run segmentation on images and save overlays
  labels           List the classes the model can recognize
  models           List the available model presets

Examples:
  python main.py segment --help
  python main.py segment --input-image photo.jpg --output-dir results
  python main.py labels
        """
    )

    parser.add_argument(
        "application",
        choices=["segment", "labels", "models"],
        help="Application to run"
    )

    parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        help="Arguments to pass to the selected application"
    )

    args = parser.parse_args()

    # Route to appropriate application
    if args.application == "segment":
        from segmentation.image_segmentator import main as segment_main
        return segment_main(args.args)

    elif args.application == "labels":
        from segmentation.labels import load_label_list
        labels_path = args.args[0] if args.args else None
        for index, label in enumerate(load_label_list(labels_path)):
            print(f"{index:3d}  {label}")

    elif args.application == "models":
        from segmentation.config import get_model_configs
        for name, config in get_model_configs().items():
            print(f"{name}  ({config['n_classes']} classes)")

    return 0


if __name__ == "__main__":
    sys.exit(main())
