"""Pinhole camera model, pose rotation, projection, and GSD geometry."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping, Sequence, Tuple, Union

import numpy as np

CZ_EPSILON = 1e-9
JACOBIAN_EPSILON = 1e-12
HORIZON_LIMIT_RAD = math.pi / 2 - 1e-3

_CAMERA_KEYS = {
    "focal_length_m": ("focal_length_m", "f_m"),
    "pixel_pitch_x_m": ("pixel_pitch_x_m", "sx_m"),
    "pixel_pitch_y_m": ("pixel_pitch_y_m", "sy_m"),
    "width_px": ("width_px", "w_px"),
    "height_px": ("height_px", "h_px"),
    "principal_x_px": ("principal_x_px", "cx_px"),
    "principal_y_px": ("principal_y_px", "cy_px"),
}


def _lookup(data: Mapping[str, Any], field_name: str) -> Any:
    for key in _CAMERA_KEYS[field_name]:
        if key in data and data[key] is not None:
            return data[key]
    return None


@dataclass(frozen=True)
class CameraModel:
    """Pinhole camera intrinsics in metres and pixels."""

    focal_length_m: float
    pixel_pitch_x_m: float
    pixel_pitch_y_m: float
    width_px: int
    height_px: int
    principal_x_px: float | None = None
    principal_y_px: float | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if self.focal_length_m <= 0:
            raise ValueError("Camera focal length must be positive.")
        if self.pixel_pitch_x_m <= 0 or self.pixel_pitch_y_m <= 0:
            raise ValueError("Camera pixel pitch must be positive.")
        if self.width_px <= 0 or self.height_px <= 0:
            raise ValueError("Camera sensor dimensions must be positive.")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CameraModel":
        """Build a camera from long-form or short (`f_m`, `sx_m`, ...) keys."""
        values = {name: _lookup(data, name) for name in _CAMERA_KEYS}
        missing = [
            name
            for name in ("focal_length_m", "pixel_pitch_x_m", "width_px", "height_px")
            if values[name] is None
        ]
        if missing:
            raise ValueError(f"Camera definition missing: {', '.join(missing)}")
        pitch_x = float(values["pixel_pitch_x_m"])
        pitch_y = values["pixel_pitch_y_m"]
        principal_x = values["principal_x_px"]
        principal_y = values["principal_y_px"]
        return cls(
            focal_length_m=float(values["focal_length_m"]),
            pixel_pitch_x_m=pitch_x,
            pixel_pitch_y_m=float(pitch_y) if pitch_y is not None else pitch_x,
            width_px=int(values["width_px"]),
            height_px=int(values["height_px"]),
            principal_x_px=float(principal_x) if principal_x is not None else None,
            principal_y_px=float(principal_y) if principal_y is not None else None,
            name=str(data["name"]) if data.get("name") else None,
        )

    @property
    def principal_x(self) -> float:
        if self.principal_x_px is None:
            return self.width_px * 0.5
        return self.principal_x_px

    @property
    def principal_y(self) -> float:
        if self.principal_y_px is None:
            return self.height_px * 0.5
        return self.principal_y_px

    @property
    def sensor_width_m(self) -> float:
        return self.width_px * self.pixel_pitch_x_m

    @property
    def sensor_height_m(self) -> float:
        return self.height_px * self.pixel_pitch_y_m

    @property
    def pixel_pitch_m(self) -> float:
        """Return the geometric-mean pixel pitch (exact for square pixels)."""
        return math.sqrt(self.pixel_pitch_x_m * self.pixel_pitch_y_m)

    @property
    def max_corner_fov_rad(self) -> float:
        """Return the angle from the optical axis to the farthest sensor corner.

        Measured from the principal point, so an off-centre principal point
        widens the cone; a centred one gives the half-diagonal field of view.
        """
        reach_x = max(self.principal_x, self.width_px - self.principal_x) * self.pixel_pitch_x_m
        reach_y = max(self.principal_y, self.height_px - self.principal_y) * self.pixel_pitch_y_m
        return math.atan(math.hypot(reach_x, reach_y) / self.focal_length_m)

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "focal_length_m": self.focal_length_m,
            "pixel_pitch_x_m": self.pixel_pitch_x_m,
            "pixel_pitch_y_m": self.pixel_pitch_y_m,
            "width_px": self.width_px,
            "height_px": self.height_px,
        }
        if self.principal_x_px is not None:
            payload["principal_x_px"] = self.principal_x_px
        if self.principal_y_px is not None:
            payload["principal_y_px"] = self.principal_y_px
        if self.name:
            payload["name"] = self.name
        return payload


@dataclass(frozen=True)
class Pose:
    """One image capture: EPSG:3857 position plus omega/phi/kappa in degrees."""

    x: float
    y: float
    z: float
    omega_deg: float = 0.0
    phi_deg: float = 0.0
    kappa_deg: float = 0.0
    polygon_id: str | None = None
    id: str | None = None

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

    def rotation(self) -> np.ndarray:
        return rotation_matrix(self.omega_deg, self.phi_deg, self.kappa_deg)


def rotation_matrix(omega_deg: float, phi_deg: float, kappa_deg: float) -> np.ndarray:
    """Return the camera-to-world rotation R = Rz(kappa) @ Ry(phi) @ Rx(omega)."""
    o, p, k = (math.radians(value) for value in (omega_deg, phi_deg, kappa_deg))
    co, so = math.cos(o), math.sin(o)
    cp, sp = math.cos(p), math.sin(p)
    ck, sk = math.cos(k), math.sin(k)
    rx = np.array([[1.0, 0.0, 0.0], [0.0, co, -so], [0.0, so, co]])
    ry = np.array([[cp, 0.0, sp], [0.0, 1.0, 0.0], [-sp, 0.0, cp]])
    rz = np.array([[ck, -sk, 0.0], [sk, ck, 0.0], [0.0, 0.0, 1.0]])
    return rz @ ry @ rx


@dataclass(frozen=True)
class Projection:
    """Sensor hit for a world point."""

    u: float
    v: float
    range_m: float


@dataclass(frozen=True)
class ProjectedPoints:
    """Vectorized projection output; `u`/`v` are meaningless where not valid."""

    u: np.ndarray
    v: np.ndarray
    valid: np.ndarray
    ranges: np.ndarray


def project_points(
    camera: CameraModel,
    rt: np.ndarray,
    position: np.ndarray,
    points: np.ndarray,
) -> ProjectedPoints:
    """Project (n, 3) world points through a camera with world-to-camera `rt`."""
    offsets = np.asarray(points, dtype=np.float64).reshape(-1, 3) - position
    cam = offsets @ rt.T
    cz = cam[:, 2]
    in_front = cz < -CZ_EPSILON
    depth = np.where(in_front, -cz, 1.0)
    u = camera.principal_x + camera.focal_length_m * (cam[:, 0] / depth) / camera.pixel_pitch_x_m
    v = camera.principal_y + camera.focal_length_m * (cam[:, 1] / depth) / camera.pixel_pitch_y_m
    valid = (
        in_front
        & (u >= 0)
        & (v >= 0)
        & (u < camera.width_px)
        & (v < camera.height_px)
    )
    return ProjectedPoints(u=u, v=v, valid=valid, ranges=np.linalg.norm(offsets, axis=1))


def project_point(camera: CameraModel, pose: Pose, point: Sequence[float]) -> Projection | None:
    """Project one world point; None when behind the camera or off the sensor."""
    result = project_points(camera, pose.rotation().T, pose.position, np.asarray([point]))
    if not bool(result.valid[0]):
        return None
    return Projection(u=float(result.u[0]), v=float(result.v[0]), range_m=float(result.ranges[0]))


def incidence_gsd(camera: CameraModel, ranges: np.ndarray, cos_incidence: np.ndarray) -> np.ndarray:
    """Return slant-range GSD stretched by the incidence angle."""
    return (ranges * camera.pixel_pitch_m / camera.focal_length_m) / cos_incidence


def jacobian_gsd(
    camera: CameraModel,
    rotation: np.ndarray,
    position: np.ndarray,
    points: np.ndarray,
    normals: np.ndarray,
) -> np.ndarray:
    """Return GSD from the ground-point Jacobian over the local tangent plane.

    The ground point is the intersection of the viewing ray through image
    plane coordinates (u, v) with the plane through `points` with normal
    `normals`; its derivatives along u and v, scaled by pixel pitch, give
    the ground footprint of one sensor pixel. Near-singular samples are NaN.
    """
    offsets = np.asarray(points, dtype=np.float64).reshape(-1, 3) - position
    lengths = np.linalg.norm(offsets, axis=1)
    with np.errstate(divide="ignore", invalid="ignore"):
        rays = offsets / lengths[:, None]
        rc = rays @ rotation
        rcz = rc[:, 2]
        ok = (lengths > 0) & (np.abs(rcz) >= JACOBIAN_EPSILON)
        safe_rcz = np.where(ok, rcz, 1.0)
        f = camera.focal_length_m
        image = np.column_stack([f * rc[:, 0] / safe_rcz, f * rc[:, 1] / safe_rcz, np.full(len(rc), f)])
        direction = image @ rotation.T
        denom = np.sum(normals * direction, axis=1)
        ok &= np.abs(denom) >= JACOBIAN_EPSILON
        safe_denom = np.where(ok, denom, 1.0)
        height = np.sum(normals * offsets, axis=1)
        scale = (height / (safe_denom * safe_denom))[:, None]
        axis_u = rotation[:, 0]
        axis_v = rotation[:, 1]
        ju = (safe_denom[:, None] * axis_u - (normals @ axis_u)[:, None] * direction) * scale
        jv = (safe_denom[:, None] * axis_v - (normals @ axis_v)[:, None] * direction) * scale
        gsd_u = np.linalg.norm(ju, axis=1) * camera.pixel_pitch_x_m
        gsd_v = np.linalg.norm(jv, axis=1) * camera.pixel_pitch_y_m
        gsd = np.sqrt(gsd_u * gsd_v)
    return np.where(ok, gsd, np.nan)


def off_nadir_angle(rotation: np.ndarray) -> float:
    """Return the angle between the optical axis and straight down."""
    return math.acos(max(-1.0, min(1.0, float(rotation[2, 2]))))


def footprint_radius(
    pose: Pose,
    camera: CameraModel,
    ground_z: float,
    margin: float = 1.25,
    *,
    rotation: np.ndarray | None = None,
) -> float:
    """Return a conservative ground radius that contains everything the pose sees.

    Uses the height above `ground_z` (the lowest terrain in the area) and
    the farthest-corner field of view widened by the camera tilt. Returns
    infinity once the widened cone reaches the horizon.
    """
    rotation = pose.rotation() if rotation is None else rotation
    height = max(1.0, pose.z - ground_z)
    angle = camera.max_corner_fov_rad + off_nadir_angle(rotation)
    if angle >= HORIZON_LIMIT_RAD:
        return math.inf
    return height * math.tan(angle) * margin


def footprint_polygon(
    pose: Pose,
    camera: CameraModel,
    ground_z: float,
) -> list[tuple[float, float]] | None:
    """Intersect the four sensor-corner rays with the plane z = ground_z."""
    rotation = pose.rotation()
    corners = []
    for u, v in ((0.0, 0.0), (camera.width_px, 0.0), (camera.width_px, camera.height_px), (0.0, camera.height_px)):
        local = np.array(
            [
                (u - camera.principal_x) * camera.pixel_pitch_x_m / camera.focal_length_m,
                (v - camera.principal_y) * camera.pixel_pitch_y_m / camera.focal_length_m,
                -1.0,
            ]
        )
        direction = rotation @ local
        if direction[2] >= -CZ_EPSILON:
            return None
        t = (ground_z - pose.z) / direction[2]
        if t <= 0:
            return None
        corners.append((pose.x + t * direction[0], pose.y + t * direction[1]))
    return corners


@dataclass(frozen=True)
class SingleCamera:
    """Every pose uses the same camera."""

    camera: CameraModel

    def resolve(self, pose_count: int) -> Tuple[CameraModel, ...]:
        return (self.camera,) * pose_count


@dataclass(frozen=True)
class PerPoseCameras:
    """Multi-camera runs: `indices[i]` selects the camera of pose i."""

    cameras: Tuple[CameraModel, ...]
    indices: Tuple[int, ...]

    def resolve(self, pose_count: int) -> Tuple[CameraModel, ...]:
        if not self.cameras:
            raise ValueError("At least one camera is required.")
        if len(self.indices) != pose_count:
            raise ValueError(
                f"Camera index count {len(self.indices)} does not match pose count {pose_count}."
            )
        resolved = []
        for index in self.indices:
            if index < 0 or index >= len(self.cameras):
                raise ValueError(f"Camera index out of range: {index}")
            resolved.append(self.cameras[index])
        return tuple(resolved)


CameraAssignment = Union[SingleCamera, PerPoseCameras]


@dataclass(frozen=True)
class PreparedPose:
    """A pose with its camera and rotation matrices resolved."""

    index: int
    pose: Pose
    camera: CameraModel
    rotation: np.ndarray
    rt: np.ndarray

    @property
    def position(self) -> np.ndarray:
        return self.pose.position


def prepare_poses(
    poses: Sequence[Pose],
    cameras: CameraAssignment,
) -> list[PreparedPose]:
    """Resolve cameras and rotation matrices once for a pose list."""
    resolved = cameras.resolve(len(poses))
    prepared = []
    for index, (pose, camera) in enumerate(zip(poses, resolved)):
        rotation = pose.rotation()
        prepared.append(
            PreparedPose(index=index, pose=pose, camera=camera, rotation=rotation, rt=rotation.T)
        )
    return prepared
