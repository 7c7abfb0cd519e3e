import re

from img2url.services.ray_id_service import generate_ray_id
from img2url.services.ray_id_service import ray_id_context


def test_generate_ray_id_format():
    ray_id = generate_ray_id()
    assert isinstance(ray_id, str)
    assert re.match(r"^[0-9a-f]{16}$", ray_id), f"Ray ID should be 16 hex chars, got: {ray_id}"


def test_generate_ray_id_uniqueness():
    ray_ids = {generate_ray_id() for _ in range(1000)}
    assert len(ray_ids) == 1000, "Ray IDs should be unique"


def test_ray_id_context_default():
    assert ray_id_context.get() == "no-ray-id"
