"""
Shared fixtures: sample badge/user/organization records, a keypair, and PNG images drawn with Pillow.
"""
import sys
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image
from PIL.PngImagePlugin import PngInfo

# Add the parent directory (project root) to Python path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from openbadge_core.crypto_utils import generate_key_pair
from openbadge_core.image_utils import encode_data_url


@pytest.fixture
def organization():
    return {
        "id": "org1",
        "name": "Acme",
        "url": "https://acme.example",
        "email": "badges@acme.example",
        "description": "Acme training academy",
    }


@pytest.fixture
def badge():
    return {
        "id": "b1",
        "name": "Python Master",
        "description": "Awarded for mastering Python",
        "earningCriteria": "Complete course",
        "achievementType": "Certificate",
        "skills": "python, testing ,packaging",
        "alignments": '[{"targetName": "Programming", "targetUrl": "https://example.org/frameworks/programming"}]',
    }


@pytest.fixture
def user():
    return {"id": "u1", "email": "a@b.com", "name": "Ada"}


@pytest.fixture
def keypair():
    return generate_key_pair()


@pytest.fixture
def png_bytes():
    """A 4x4 RGBA PNG carrying one tEXt chunk ahead of the image data."""
    img = Image.new("RGBA", (4, 4), (255, 0, 0, 255))
    info = PngInfo()
    info.add_text("Software", "badge-tests")
    output = BytesIO()
    img.save(output, "PNG", pnginfo=info)
    return output.getvalue()


@pytest.fixture
def png_data_url(png_bytes):
    return encode_data_url(png_bytes, "image/png")
