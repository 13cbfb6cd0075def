import argparse
import logging

import cv2

from landmark_kit import (
    LANDMARK_CLASS_NAMES,
    DetectorConfig,
    OutputLayout,
    bgr_to_rgb,
    load_class_names,
    load_detector,
    load_detector_from_profile,
    read_image,
)


def _print_batch(batch, prefix: str = "") -> None:
    if not batch.ok:
        print(f"{prefix}error: {batch.error}")
        return
    for det in batch:
        print(f"{prefix}{det.class_name} {det.confidence:.3f} {det.as_xyxy()}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Run landmark detection on an image or video and print the boxes.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--image", default=None, help="Path to an input image.")
    src.add_argument("--video", default=None, help="Path to an input video file.")
    parser.add_argument("--profile", default=None, help="Detector profile JSON (overrides the model options below).")
    parser.add_argument("--model", default="models/best_float32.tflite", help="Path to a model (.tflite/.onnx/.pt/.npy).")
    parser.add_argument("--labels", default=None, help="labels.txt or metadata.yaml; defaults to the landmark classes.")
    parser.add_argument("--backend", default=None, help="Force backend: tflite / onnxruntime / torchscript / replay.")
    parser.add_argument("--layout", default=OutputLayout.CHANNEL_MAJOR.value, choices=[m.value for m in OutputLayout])
    parser.add_argument("--num-classes", type=int, default=len(LANDMARK_CLASS_NAMES), help="Class scores per candidate.")
    parser.add_argument("--imgsz", type=int, default=512, help="Letterbox input size.")
    parser.add_argument("--input-layout", default="nhwc", choices=["nhwc", "nchw"], help="Model input tensor layout.")
    parser.add_argument("--conf", type=float, default=0.5, help="Confidence threshold.")
    parser.add_argument("--iou", type=float, default=0.5, help="IoU threshold for NMS.")
    parser.add_argument("--every", type=int, default=1, help="Process every Nth frame for video.")
    parser.add_argument("--max-frames", type=int, default=0, help="Stop after N processed frames (0 = no limit).")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, WARNING, ...).")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    if args.every < 1:
        raise ValueError("--every must be >= 1")
    if args.max_frames < 0:
        raise ValueError("--max-frames must be >= 0")

    if args.profile:
        detector = load_detector_from_profile(args.profile)
    else:
        class_names = load_class_names(args.labels) if args.labels else list(LANDMARK_CLASS_NAMES)
        config = DetectorConfig(
            input_size=args.imgsz,
            layout=OutputLayout(args.layout),
            num_classes=args.num_classes,
            confidence_threshold=args.conf,
            iou_threshold=args.iou,
            input_layout=args.input_layout,
        )
        detector = load_detector(args.model, config, backend=args.backend, class_names=class_names)

    with detector:
        if args.image is not None:
            _print_batch(detector.detect(read_image(args.image)))
            return 0

        cap = cv2.VideoCapture(args.video)
        if not cap.isOpened():
            raise FileNotFoundError(f"Could not open video: {args.video}")

        frame_idx = 0
        processed = 0
        try:
            while True:
                ok, frame = cap.read()
                if not ok or frame is None:
                    break

                frame_idx += 1
                if (frame_idx - 1) % args.every != 0:
                    continue

                _print_batch(detector.detect(bgr_to_rgb(frame)), prefix=f"[{frame_idx}] ")

                processed += 1
                if args.max_frames and processed >= args.max_frames:
                    break
        finally:
            cap.release()

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
