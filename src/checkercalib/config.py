"""
Configuration loading/saving.

Pure functions operating on dataclasses.
- TOML for calibration settings and scenes
- JSON for checkerboard detections (one checkers_<viewId>.json per view)
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path

import cv2
import numpy as np
import rtoml

from .camera import EquidistantIntrinsic, Intrinsic, PinholeIntrinsic, RadialTangentialDistortion
from .scene import Scene
from .types import (
    Checkerboard,
    CheckerDetection,
    Corner,
    Landmark,
    Observation,
    Pose,
    View,
)


# ============================================================================
# Calibration Settings
# ============================================================================


@dataclass(frozen=True, slots=True)
class RefinementConfig:
    """
    Settings for the nonlinear refinement (scipy least_squares).
    """

    ftol: float = 1e-8
    xtol: float = 1e-8
    gtol: float = 1e-8
    max_nfev: int | None = None  # None: scipy default (100 * n_params for trf)
    loss: str = "linear"
    summary: bool = False


@dataclass(frozen=True, slots=True)
class CalibrationConfig:
    """
    Settings for one calibration run.
    """

    square_size: float = 0.1
    use_nested_boards: bool = False
    use_simple_pinhole: bool = False
    nested_square_size: float = 0.25
    min_board_corners: int = 30
    min_inliers: int = 10
    homography_iterations: int = 1024
    pose_iterations: int = 1000
    seed: int = 5489
    refinement: RefinementConfig = field(default_factory=RefinementConfig)


def load_calibration_config(path: Path) -> CalibrationConfig:
    """
    Load calibration settings from a TOML file.

    Missing keys keep their defaults.

    Args:
        path: Path to the settings file

    Returns:
        CalibrationConfig dataclass
    """
    data = rtoml.load(Path(path))
    defaults = CalibrationConfig()

    refinement_data = data.get("refinement", {})
    base = RefinementConfig()
    refinement = RefinementConfig(
        ftol=float(refinement_data.get("ftol", base.ftol)),
        xtol=float(refinement_data.get("xtol", base.xtol)),
        gtol=float(refinement_data.get("gtol", base.gtol)),
        max_nfev=int(refinement_data["max_nfev"]) if "max_nfev" in refinement_data else base.max_nfev,
        loss=refinement_data.get("loss", base.loss),
        summary=bool(refinement_data.get("summary", base.summary)),
    )

    return CalibrationConfig(
        square_size=float(data.get("square_size", defaults.square_size)),
        use_nested_boards=bool(data.get("use_nested_boards", defaults.use_nested_boards)),
        use_simple_pinhole=bool(data.get("use_simple_pinhole", defaults.use_simple_pinhole)),
        nested_square_size=float(data.get("nested_square_size", defaults.nested_square_size)),
        min_board_corners=int(data.get("min_board_corners", defaults.min_board_corners)),
        min_inliers=int(data.get("min_inliers", defaults.min_inliers)),
        homography_iterations=int(data.get("homography_iterations", defaults.homography_iterations)),
        pose_iterations=int(data.get("pose_iterations", defaults.pose_iterations)),
        seed=int(data.get("seed", defaults.seed)),
        refinement=refinement,
    )


def save_calibration_config(config: CalibrationConfig, path: Path) -> None:
    """
    Save calibration settings to a TOML file.

    Args:
        config: CalibrationConfig dataclass
        path: Path to save the settings
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    data = asdict(config)
    # TOML has no null: an unset evaluation budget is simply left out
    data["refinement"] = {k: v for k, v in data["refinement"].items() if v is not None}

    with open(path, "w") as f:
        rtoml.dump(data, f)


# ============================================================================
# Scene Storage (TOML)
# ============================================================================


def _intrinsic_to_dict(intrinsic: Intrinsic) -> dict:
    pinhole = intrinsic.as_pinhole()
    if pinhole is not None:
        data = {
            "type": pinhole.type_name,
            "width": pinhole.width,
            "height": pinhole.height,
            "focal": pinhole.scale.tolist(),
            "offset": pinhole.offset.tolist(),
            "skew": pinhole.skew,
            "ratio_locked": pinhole.ratio_locked,
        }
        # TOML has no null: absence means "no distortion model"
        if pinhole.distortion is not None:
            data["distortion"] = pinhole.distortion.parameters.tolist()
        return data

    if isinstance(intrinsic, EquidistantIntrinsic):
        return {
            "type": intrinsic.type_name,
            "width": intrinsic.width,
            "height": intrinsic.height,
            "focal": intrinsic.focal,
            "offset": intrinsic.offset.tolist(),
        }

    raise ValueError(f"Cannot serialize intrinsic of type {type(intrinsic).__name__}")


def _intrinsic_from_dict(data: dict) -> Intrinsic:
    kind = data.get("type", "pinhole")
    if kind == PinholeIntrinsic.type_name:
        distortion = data.get("distortion")
        return PinholeIntrinsic(
            data["width"],
            data["height"],
            focal=tuple(data.get("focal", [1.0, 1.0])),
            offset=tuple(data.get("offset", [0.0, 0.0])),
            skew=data.get("skew", 0.0),
            distortion=RadialTangentialDistortion(distortion) if distortion is not None else None,
            ratio_locked=data.get("ratio_locked", False),
        )
    if kind == EquidistantIntrinsic.type_name:
        return EquidistantIntrinsic(
            data["width"],
            data["height"],
            focal=data.get("focal", 1.0),
            offset=tuple(data.get("offset", [0.0, 0.0])),
        )
    raise ValueError(f"Unknown intrinsic type: {kind}")


def save_scene(scene: Scene, path: Path) -> None:
    """
    Save a scene to a TOML file.

    Rotations are stored as Rodrigues vectors for compact storage.

    Args:
        scene: Scene to save
        path: Output TOML path
    """
    data = {"views": {}, "intrinsics": {}, "poses": {}, "landmarks": {}}

    for view_id, view in scene.views.items():
        data["views"][str(view_id)] = {
            "intrinsic_id": view.intrinsic_id,
            "pose_id": view.pose_id,
            "width": view.width,
            "height": view.height,
            "image_path": view.image_path,
        }

    for intrinsic_id, intrinsic in scene.intrinsics.items():
        data["intrinsics"][str(intrinsic_id)] = _intrinsic_to_dict(intrinsic)

    for pose_id, pose in scene.poses.items():
        data["poses"][str(pose_id)] = {
            "rotation": cv2.Rodrigues(pose.rotation)[0][:, 0].tolist(),
            "center": pose.center.tolist(),
        }

    for landmark_id, landmark in scene.landmarks.items():
        data["landmarks"][str(landmark_id)] = {
            "X": np.asarray(landmark.X, dtype=np.float64).tolist(),
            "desc_type": landmark.desc_type,
            "observations": {
                str(view_id): {
                    "x": np.asarray(obs.x, dtype=np.float64).tolist(),
                    "feature_id": obs.feature_id,
                    "scale": obs.scale,
                }
                for view_id, obs in landmark.observations.items()
            },
        }

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        rtoml.dump(data, f)


def load_scene(path: Path) -> Scene:
    """
    Load a scene from a TOML file.

    Args:
        path: Path to the scene file

    Returns:
        Scene with views, intrinsics, poses and landmarks
    """
    data = rtoml.load(Path(path))
    scene = Scene()

    for key, view_data in data.get("views", {}).items():
        view_id = int(key)
        scene.views[view_id] = View(
            view_id=view_id,
            intrinsic_id=int(view_data["intrinsic_id"]),
            pose_id=int(view_data.get("pose_id", view_id)),
            width=int(view_data["width"]),
            height=int(view_data["height"]),
            image_path=view_data.get("image_path", ""),
        )

    for key, intrinsic_data in data.get("intrinsics", {}).items():
        scene.intrinsics[int(key)] = _intrinsic_from_dict(intrinsic_data)

    for key, pose_data in data.get("poses", {}).items():
        rotation = cv2.Rodrigues(np.array(pose_data["rotation"], dtype=np.float64))[0]
        scene.poses[int(key)] = Pose(
            rotation=rotation,
            center=np.array(pose_data["center"], dtype=np.float64),
        )

    for key, landmark_data in data.get("landmarks", {}).items():
        observations = {
            int(view_key): Observation(
                x=np.array(obs_data["x"], dtype=np.float64),
                feature_id=int(obs_data.get("feature_id", 0)),
                scale=float(obs_data.get("scale", 1.0)),
            )
            for view_key, obs_data in landmark_data.get("observations", {}).items()
        }
        scene.landmarks[int(key)] = Landmark(
            X=np.array(landmark_data["X"], dtype=np.float64),
            desc_type=landmark_data.get("desc_type", "checkerboard"),
            observations=observations,
        )

    return scene


# ============================================================================
# Checkerboard Detections (JSON)
# ============================================================================


def detection_path(directory: Path, view_id: int) -> Path:
    return Path(directory) / f"checkers_{view_id}.json"


def save_detection(detection: CheckerDetection, directory: Path, view_id: int) -> Path:
    """
    Write one view's detections to checkers_<view_id>.json.

    Returns:
        Path of the written file
    """
    data = {
        "corners": [
            {"center": np.asarray(c.center, dtype=np.float64).tolist(), "scale": c.scale}
            for c in detection.corners
        ],
        "boards": [board.grid.tolist() for board in detection.boards],
    }

    path = detection_path(directory, view_id)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(data, f, indent=2)

    return path


def load_detection(path: Path) -> CheckerDetection:
    with open(path) as f:
        data = json.load(f)

    corners = [
        Corner(
            center=np.array(c["center"], dtype=np.float64),
            scale=float(c.get("scale", 1.0)),
        )
        for c in data.get("corners", [])
    ]
    boards = []
    for grid in data.get("boards", []):
        grid = np.array(grid, dtype=np.int64)
        if grid.size == 0:
            continue
        boards.append(Checkerboard(grid=grid.reshape(len(grid), -1)))

    return CheckerDetection(corners=corners, boards=boards)


def load_detections(directory: Path, view_ids) -> dict[int, CheckerDetection]:
    """
    Load the detections of every view that has a checkers_<id>.json file.

    Views without a file are absent from the result (they are skipped,
    not an error).

    Args:
        directory: Folder holding the JSON files
        view_ids: Views to look up

    Returns:
        Dict of view_id -> CheckerDetection
    """
    detections = {}
    for view_id in sorted(view_ids):
        path = detection_path(directory, view_id)
        if path.exists():
            detections[view_id] = load_detection(path)
    return detections
