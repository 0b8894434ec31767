from __future__ import annotations

import math

import numpy as np
import pytest

from flightcov.overlap.camera import (
    CameraModel,
    PerPoseCameras,
    Pose,
    SingleCamera,
    footprint_polygon,
    footprint_radius,
    incidence_gsd,
    jacobian_gsd,
    prepare_poses,
    project_point,
    project_points,
    rotation_matrix,
)
from flightcov.presets import get_camera_preset


def _sony() -> CameraModel:
    preset = get_camera_preset("SONY_RX1R2")
    assert preset is not None
    return preset.camera


def test_rotation_identity_and_orthonormal() -> None:
    np.testing.assert_allclose(rotation_matrix(0.0, 0.0, 0.0), np.eye(3))
    rotation = rotation_matrix(12.0, -7.5, 133.0)
    np.testing.assert_allclose(rotation @ rotation.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(rotation) == pytest.approx(1.0)


def test_rotation_order_is_kappa_phi_omega() -> None:
    rz = rotation_matrix(0.0, 0.0, 30.0)
    ry = rotation_matrix(0.0, 20.0, 0.0)
    rx = rotation_matrix(10.0, 0.0, 0.0)
    np.testing.assert_allclose(rotation_matrix(10.0, 20.0, 30.0), rz @ ry @ rx)


def test_project_point_nadir_hits_principal_point() -> None:
    camera = _sony()
    pose = Pose(x=100.0, y=200.0, z=150.0)
    projection = project_point(camera, pose, (100.0, 200.0, 50.0))
    assert projection is not None
    assert projection.u == pytest.approx(camera.width_px / 2)
    assert projection.v == pytest.approx(camera.height_px / 2)
    assert projection.range_m == pytest.approx(100.0)


def test_project_point_behind_or_off_sensor() -> None:
    camera = _sony()
    pose = Pose(x=0.0, y=0.0, z=100.0)
    assert project_point(camera, pose, (0.0, 0.0, 150.0)) is None
    assert project_point(camera, pose, (500.0, 0.0, 0.0)) is None


def test_project_points_principal_offset() -> None:
    camera = CameraModel(0.01, 1e-5, 1e-5, 100, 80, principal_x_px=40.0, principal_y_px=30.0)
    pose = Pose(x=0.0, y=0.0, z=10.0)
    result = project_points(camera, pose.rotation().T, pose.position, np.array([[0.0, 0.0, 0.0]]))
    assert bool(result.valid[0])
    assert result.u[0] == pytest.approx(40.0)
    assert result.v[0] == pytest.approx(30.0)


def test_flat_nadir_gsd_matches_nominal() -> None:
    camera = _sony()
    gsd = incidence_gsd(camera, np.array([100.0]), np.array([1.0]))
    assert gsd[0] == pytest.approx(0.013943, abs=1e-6)


def test_jacobian_matches_incidence_at_nadir() -> None:
    camera = _sony()
    pose = Pose(x=0.0, y=0.0, z=100.0)
    gsd = jacobian_gsd(
        camera,
        pose.rotation(),
        pose.position,
        np.array([[0.0, 0.0, 0.0]]),
        np.array([[0.0, 0.0, 1.0]]),
    )
    assert gsd[0] == pytest.approx(0.013943, abs=1e-6)


def test_jacobian_uniform_for_parallel_plane_and_rejects_degenerate() -> None:
    camera = _sony()
    pose = Pose(x=0.0, y=0.0, z=100.0)
    points = np.array([[0.0, 0.0, 0.0], [40.0, 0.0, 0.0], [0.0, 0.0, 100.0]])
    normals = np.tile([0.0, 0.0, 1.0], (3, 1))
    gsd = jacobian_gsd(camera, pose.rotation(), pose.position, points, normals)
    assert gsd[1] == pytest.approx(gsd[0])
    assert math.isnan(gsd[2])
    ranges = np.linalg.norm(points[:2] - pose.position, axis=1)
    cos_incidence = 100.0 / ranges
    assert incidence_gsd(camera, ranges, cos_incidence)[1] > gsd[1]


def test_jacobian_grows_for_tilted_camera() -> None:
    camera = _sony()
    nadir = Pose(x=0.0, y=0.0, z=100.0)
    tilted = Pose(x=0.0, y=0.0, z=100.0, phi_deg=30.0)
    point = np.array([[-100.0 * math.tan(math.radians(30.0)), 0.0, 0.0]])
    normal = np.array([[0.0, 0.0, 1.0]])
    base = jacobian_gsd(camera, nadir.rotation(), nadir.position, np.zeros((1, 3)), normal)
    oblique = jacobian_gsd(camera, tilted.rotation(), tilted.position, point, normal)
    assert oblique[0] > base[0]


def test_footprint_radius_nadir_and_tilted() -> None:
    camera = _sony()
    nadir = Pose(x=0.0, y=0.0, z=120.0)
    radius = footprint_radius(nadir, camera, 20.0, margin=1.0)
    assert radius == pytest.approx(100.0 * math.tan(camera.max_corner_fov_rad))
    tilted = Pose(x=0.0, y=0.0, z=120.0, phi_deg=30.0)
    assert footprint_radius(tilted, camera, 20.0, margin=1.0) > radius
    horizon = Pose(x=0.0, y=0.0, z=120.0, omega_deg=89.0)
    assert math.isinf(footprint_radius(horizon, camera, 20.0))


def test_footprint_radius_uses_minimum_height() -> None:
    camera = _sony()
    low = Pose(x=0.0, y=0.0, z=10.0)
    assert footprint_radius(low, camera, 50.0, margin=1.0) == pytest.approx(
        math.tan(camera.max_corner_fov_rad)
    )


def test_corner_fov_follows_principal_point() -> None:
    centred = CameraModel(0.035, 4.88e-6, 4.88e-6, 7952, 5304)
    half_diagonal = math.atan(
        0.5 * math.hypot(centred.sensor_width_m, centred.sensor_height_m) / 0.035
    )
    assert centred.max_corner_fov_rad == pytest.approx(half_diagonal)

    shifted = CameraModel(0.035, 4.88e-6, 4.88e-6, 7952, 5304, principal_x_px=795.2)
    reach = math.hypot(0.9 * centred.sensor_width_m, 0.5 * centred.sensor_height_m)
    assert shifted.max_corner_fov_rad == pytest.approx(math.atan(reach / 0.035))
    nadir = Pose(x=0.0, y=0.0, z=100.0)
    assert footprint_radius(nadir, shifted, 0.0) > footprint_radius(nadir, centred, 0.0)


def test_footprint_polygon_matches_nominal_size() -> None:
    camera = _sony()
    corners = footprint_polygon(Pose(x=0.0, y=0.0, z=100.0), camera, 0.0)
    assert corners is not None
    xs = [point[0] for point in corners]
    ys = [point[1] for point in corners]
    assert max(xs) - min(xs) == pytest.approx(camera.width_px * 0.013943, rel=1e-4)
    assert max(ys) - min(ys) == pytest.approx(camera.height_px * 0.013943, rel=1e-4)
    sideways = Pose(x=0.0, y=0.0, z=100.0, omega_deg=90.0)
    assert footprint_polygon(sideways, camera, 0.0) is None


def test_camera_validation_and_from_dict() -> None:
    with pytest.raises(ValueError, match="focal length"):
        CameraModel(0.0, 1e-6, 1e-6, 10, 10)
    with pytest.raises(ValueError, match="dimensions"):
        CameraModel(0.01, 1e-6, 1e-6, 0, 10)
    camera = CameraModel.from_dict({"f_m": 0.02, "sx_m": 3e-6, "w_px": 100, "h_px": 50})
    assert camera.pixel_pitch_y_m == pytest.approx(3e-6)
    assert camera.principal_x == 50.0
    with pytest.raises(ValueError, match="missing"):
        CameraModel.from_dict({"f_m": 0.02})


def test_camera_assignment_resolution() -> None:
    first = _sony()
    second = CameraModel(0.05, 4e-6, 4e-6, 6000, 4000)
    assert SingleCamera(first).resolve(3) == (first, first, first)
    per_pose = PerPoseCameras((first, second), (1, 0))
    assert per_pose.resolve(2) == (second, first)
    with pytest.raises(ValueError, match="does not match"):
        per_pose.resolve(3)
    with pytest.raises(ValueError, match="out of range"):
        PerPoseCameras((first,), (0, 2)).resolve(2)


def test_prepare_poses_keeps_global_order() -> None:
    camera = _sony()
    poses = [Pose(0.0, 0.0, 100.0, kappa_deg=float(index)) for index in range(3)]
    prepared = prepare_poses(poses, SingleCamera(camera))
    assert [item.index for item in prepared] == [0, 1, 2]
    np.testing.assert_allclose(prepared[2].rt, rotation_matrix(0.0, 0.0, 2.0).T)
