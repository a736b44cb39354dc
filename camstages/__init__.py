"""Post-processing stages for YUV420 camera frames and the helpers they share."""

__version__ = "0.1.0"

__all__ = [
    "pwl",
    "stage",
    "negate",
    "motion_detect",
    "object_detect",
    "tf_stage",
    "object_classify_tf",
    "object_detect_tf",
    "pose_estimation_tf",
    "segmentation_tf",
]