# tests/conftest.py
import shutil
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest
from astropy.io import fits
from PIL import Image


def write_fits(path: Path, data: np.ndarray, **header_cards) -> Path:
    """Writes a single-HDU FITS file with the given extra header cards."""
    path.parent.mkdir(parents=True, exist_ok=True)
    header = fits.Header()
    for key, value in header_cards.items():
        header[key.replace("_", "-")] = value
    fits.PrimaryHDU(data=data, header=header).writeto(path, overwrite=True)
    return path


def noisy_frame(seed: int, shape=(100, 100), background=1000, sigma=50) -> np.ndarray:
    """A dark sky background with one saturated star pixel, as uint16."""
    rng = np.random.default_rng(seed)
    frame = rng.normal(background, sigma, size=shape).clip(0, 65535).astype(np.uint16)
    frame[shape[0] // 2, shape[1] // 2] = 60000
    return frame


@pytest.fixture
def fits_factory(tmp_path: Path):
    def make(name: str, data: np.ndarray = None, **header_cards) -> Path:
        if data is None:
            data = noisy_frame(len(name))
        return write_fits(tmp_path / name, data, **header_cards)
    return make


@pytest.fixture(scope="function")
def test_env(tmp_path: Path, monkeypatch):
    """
    Creates a self-contained temporary environment for testing.

    Structure:
        tmp_path/
        ├── project_root/
        │   ├── astrocat.toml        (test config)
        │   └── test_data/           (files to be imported)
        │       ├── lights/
        │       │   ├── M81_L_001.fits
        │       │   ├── M81_R_001.fits
        │       │   └── sub/
        │       │       └── M81_L_001_copy.fits  (byte-identical to M81_L_001)
        │       ├── osc/
        │       │   └── NGC7000.fits  (Bayer mosaic)
        │       ├── preview.png
        │       └── notes.txt         (not an image; ignored)
        └── home/
            └── .astrocat/            (location for the test database)
    """
    project_root = tmp_path / "project_root"
    data_dir = project_root / "test_data"
    lights = data_dir / "lights"
    db_dir = tmp_path / "home" / ".astrocat"
    project_root.mkdir(parents=True)

    m81_l = write_fits(
        lights / "M81_L_001.fits", noisy_frame(1),
        OBJECT="M81", FILTER="L", INSTRUME="ASI1600MM", EXPTIME=300.0, DATE_OBS="2021-03-04T22:10:05",
    )
    m81_r = write_fits(
        lights / "M81_R_001.fits", noisy_frame(2),
        OBJECT="M81", FILTER="R", INSTRUME="ASI1600MM", EXPTIME=300.0, DATE_OBS="2021-03-05T21:00:00",
    )
    (lights / "sub").mkdir()
    m81_copy = lights / "sub" / "M81_L_001_copy.fits"
    shutil.copyfile(m81_l, m81_copy)
    ngc7000 = write_fits(
        data_dir / "osc" / "NGC7000.fits", noisy_frame(3, shape=(200, 200)),
        OBJECT="NGC7000", INSTRUME="ASI294MC", BAYERPAT="RGGB", DATE_OBS="2022-08-01T01:00:00",
    )
    preview = data_dir / "preview.png"
    Image.new("RGB", (64, 48), (30, 60, 90)).save(preview)
    (data_dir / "notes.txt").write_text("Seeing was poor after midnight.")

    database_path = db_dir / "astrocat.db"
    config_path = project_root / "astrocat.toml"
    config_path.write_text(f"""
[tool.astrocat]
database_path = "{database_path.as_posix()}"
workers = 2
coalesce_interval_ms = 0
""")

    # Keep the per-user app directory inside the sandbox.
    monkeypatch.setattr("astrocat.config.get_app_dir", lambda: db_dir)
    monkeypatch.chdir(project_root)

    yield SimpleNamespace(
        root=project_root,
        data_dir=data_dir,
        config_path=config_path,
        database_path=database_path,
        m81_l=m81_l,
        m81_r=m81_r,
        m81_copy=m81_copy,
        ngc7000=ngc7000,
        preview=preview,
    )
