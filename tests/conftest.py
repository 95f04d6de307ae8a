import io
import os
import tempfile

import pytest
from PIL import Image

# Settings are read at import time, so point them at a scratch directory first
_RUN_DIR = tempfile.mkdtemp(prefix="gemstudio-tests-")
os.environ.setdefault("GEMSTUDIO_OUTPUT_ROOT", os.path.join(_RUN_DIR, "runs"))
os.environ.setdefault("GEMSTUDIO_PROFILE_DB_PATH", os.path.join(_RUN_DIR, "profiles.db"))
os.environ.setdefault("GEMSTUDIO_JOBS_DB_PATH", os.path.join(_RUN_DIR, "jobs.db"))
os.environ["GEMSTUDIO_USE_MOCK_BACKENDS"] = "true"


@pytest.fixture
def make_png():
    def _make(size=(100, 100), color=(40, 40, 40), mode="RGB"):
        buffer = io.BytesIO()
        Image.new(mode, size, color).save(buffer, format="PNG")
        return buffer.getvalue()
    return _make
