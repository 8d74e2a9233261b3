"""Pytest configuration for motionforge tests."""
import json
import sys
from pathlib import Path

import pytest

# Add src directory to Python path so tests can import motionforge without installing it.
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from motionforge.runtime import MotionForgeRuntime  # noqa: E402
from motionforge.services.tools.handlers import ToolHandlers  # noqa: E402


def _object(object_id, name, geometry, color, x):
    return {
        "id": object_id,
        "name": name,
        "geometryType": geometry,
        "color": color,
        "position": [x, 0.5, 0],
        "rotation": [0, 0, 0],
        "scale": [1, 1, 1],
    }


@pytest.fixture
def sample_project():
    """Two-object v4 project with a 2 second clip and no tracks."""
    return {
        "version": 4,
        "objects": [
            _object("obj_cube", "Cube", "box", 4491519, 0),
            _object("obj_sphere", "Sphere", "sphere", 16739229, 1.5),
        ],
        "animation": {"durationSeconds": 2, "tracks": []},
    }


@pytest.fixture
def sample_project_json(sample_project):
    return json.dumps(sample_project)


@pytest.fixture
def legacy_project_json():
    """Version 1 project: no bind paths, no takes."""
    return json.dumps({
        "version": 1,
        "objects": [_object("obj_cube", "Cube", "box", 4491519, 0)],
    })


@pytest.fixture
def runtime(sample_project_json):
    rt = MotionForgeRuntime()
    rt.load_project_json(sample_project_json, staged=False)
    return rt


@pytest.fixture
def handlers(tmp_path):
    """Handlers over an empty runtime, exporting relative paths under tmp_path."""
    return ToolHandlers(version="0.0.0-test", output_dir=tmp_path)


@pytest.fixture
def loaded_handlers(handlers, sample_project_json):
    result = handlers.call("mf.project.loadJson", {"json": sample_project_json, "staged": False})
    assert result["ok"] is True
    return handlers
