# checkercalib - Checkerboard camera calibration

__version__ = "0.1.0"

# Core types
from checkercalib.types import (
    UNDEFINED,
    Corner,
    Checkerboard,
    CheckerDetection,
    Pose,
    View,
    Observation,
    Landmark,
    CalibrationError,
    PreconditionError,
    NotPinholeError,
    InconsistentBoardError,
    RobustFitError,
    DegenerateIntrinsicError,
    RefinementError,
)

# Camera models
from checkercalib.camera import (
    Intrinsic,
    PinholeIntrinsic,
    EquidistantIntrinsic,
    RadialTangentialDistortion,
)

from checkercalib.scene import Scene

# Configuration
from checkercalib.config import (
    CalibrationConfig,
    RefinementConfig,
    load_calibration_config,
    save_calibration_config,
    load_scene,
    save_scene,
    load_detections,
    save_detection,
)

# Calibration
from checkercalib.calibration import (
    BundleAdjustment,
    RefineOptions,
    CalibrationOutcome,
    calibrate_multi_view,
    calibrate_nested_boards,
    run_calibration,
)

__all__ = [
    # Core types
    "UNDEFINED",
    "Corner",
    "Checkerboard",
    "CheckerDetection",
    "Pose",
    "View",
    "Observation",
    "Landmark",
    # Errors
    "CalibrationError",
    "PreconditionError",
    "NotPinholeError",
    "InconsistentBoardError",
    "RobustFitError",
    "DegenerateIntrinsicError",
    "RefinementError",
    # Camera models
    "Intrinsic",
    "PinholeIntrinsic",
    "EquidistantIntrinsic",
    "RadialTangentialDistortion",
    "Scene",
    # Configuration
    "CalibrationConfig",
    "RefinementConfig",
    "load_calibration_config",
    "save_calibration_config",
    "load_scene",
    "save_scene",
    "load_detections",
    "save_detection",
    # Calibration
    "BundleAdjustment",
    "RefineOptions",
    "CalibrationOutcome",
    "calibrate_multi_view",
    "calibrate_nested_boards",
    "run_calibration",
]
