"""
Error taxonomy for landmark_kit.

- InvalidImageError: the input image cannot be letterboxed; fails the whole call.
- InferenceBackendError: the model could not be loaded or a `run` call failed.
- DecodeLayoutMismatchError: the output tensor does not match the configured layout.
- DetectorClosedError: `detect` was called after `close()`.
"""

from __future__ import annotations


class LandmarkKitError(Exception):
    pass


class InvalidImageError(LandmarkKitError, ValueError):
    pass


class InferenceBackendError(LandmarkKitError, RuntimeError):
    pass


class DecodeLayoutMismatchError(LandmarkKitError, ValueError):
    pass


class DetectorClosedError(LandmarkKitError, RuntimeError):
    pass
