"""
Scene container: views, intrinsics, poses and landmarks keyed by id.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from .camera import Intrinsic
from .types import Landmark, Pose, View


@dataclass
class Scene:
    views: dict[int, View] = field(default_factory=dict)
    intrinsics: dict[int, Intrinsic] = field(default_factory=dict)
    poses: dict[int, Pose] = field(default_factory=dict)
    landmarks: dict[int, Landmark] = field(default_factory=dict)

    def intrinsic_for_view(self, view_id: int) -> Intrinsic | None:
        view = self.views.get(view_id)
        if view is None:
            return None
        return self.intrinsics.get(view.intrinsic_id)

    def pose_for_view(self, view_id: int) -> Pose | None:
        view = self.views.get(view_id)
        if view is None:
            return None
        return self.poses.get(view.pose_id)

    def views_for_intrinsic(self, intrinsic_id: int) -> list[int]:
        return sorted(
            view_id
            for view_id, view in self.views.items()
            if view.intrinsic_id == intrinsic_id
        )

    def is_pose_and_intrinsic_defined(self, view_id: int) -> bool:
        return (
            self.pose_for_view(view_id) is not None
            and self.intrinsic_for_view(view_id) is not None
        )

    def validate(self) -> list[str]:
        """
        Check that every observation references an existing view.

        Returns:
            List of problems, empty when the scene is consistent
        """
        problems = []
        for landmark_id, landmark in self.landmarks.items():
            for view_id in landmark.observations:
                if view_id not in self.views:
                    problems.append(
                        f"Landmark {landmark_id} observed in unknown view {view_id}"
                    )
        for view_id, view in self.views.items():
            if view.intrinsic_id not in self.intrinsics:
                problems.append(f"View {view_id} references unknown intrinsic {view.intrinsic_id}")
        return problems

    def reprojection_residuals(self) -> np.ndarray:
        """
        Unweighted (n, 2) pixel residuals of every usable observation.
        """
        residuals = []
        for landmark in self.landmarks.values():
            for view_id, obs in landmark.observations.items():
                if not self.is_pose_and_intrinsic_defined(view_id):
                    continue
                pinhole = self.intrinsic_for_view(view_id).as_pinhole()
                if pinhole is None:
                    continue
                pose = self.pose_for_view(view_id)
                projected = pinhole.project(pose, landmark.X[None, :])[0]
                residuals.append(projected - obs.x)

        if not residuals:
            return np.zeros((0, 2), dtype=np.float64)
        return np.array(residuals, dtype=np.float64)

    def reprojection_rmse(self) -> float:
        residuals = self.reprojection_residuals()
        if residuals.size == 0:
            return 0.0
        return float(np.sqrt(np.mean(np.sum(residuals**2, axis=1))))
