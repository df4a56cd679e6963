"""Pytest configuration and fixtures for mridefacer tests."""

from __future__ import annotations

import logging
from pathlib import Path

import nibabel as nb
import numpy as np
import pytest

from mridefacer.config import DATA_FILES, DefaceData, FSLToolkit
from mridefacer.utils.logging import get_logger

LOGGER = get_logger(__name__)


def make_image(
    path: Path,
    shape=(16, 16, 16),
    zooms=(1.0, 1.0, 1.0),
    dtype=np.int16,
    seed: int = 0,
) -> Path:
    """
    Write a synthetic image with random intensities.

    Parameters
    ----------
    path : Path
        Output file, the extension selects the format.
    shape : tuple
        Image dimensions (3D or 4D).
    zooms : tuple
        Voxel size of the spatial axes (mm).
    dtype : numpy dtype
        On-disk data type.
    seed : int
        Random seed, so repeated calls give identical data.

    Returns
    -------
    Path
        ``path``
    """
    rng = np.random.default_rng(seed)
    data = rng.integers(100, 200, size=shape).astype(dtype)
    affine = np.diag(list(zooms) + [1.0])
    img = nb.Nifti1Image(data, affine)
    img.header.set_zooms(tuple(zooms) + tuple(1.0 for _ in shape[3:]))
    path.parent.mkdir(parents=True, exist_ok=True)
    nb.save(img, str(path))
    return path


@pytest.fixture(autouse=True)
def _reset_logging():
    """Let records reach pytest's caplog even after a CLI test configured logging."""
    logger = logging.getLogger('mridefacer')
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def t1w_file(tmp_path: Path) -> Path:
    """A 1 mm isotropic single-volume image."""
    return make_image(tmp_path / 'bids' / 'sub-01' / 'anat' / 'sub-01_T1w.nii.gz')


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """
    Directory holding stand-ins for the template data files.

    Parameters
    ----------
    tmp_path : Path
        Pytest's temporary directory fixture

    Returns
    -------
    Path
        Directory containing the template, face mask and weights
    """
    root = tmp_path / 'mridefacer_data'
    for i, fname in enumerate(DATA_FILES):
        make_image(root / fname, shape=(8, 8, 8), zooms=(2.0, 2.0, 2.0), seed=i)
    LOGGER.info('Created template data at %s', root)
    return root


@pytest.fixture
def deface_data(data_dir: Path) -> DefaceData:
    return DefaceData.from_dir(data_dir)


@pytest.fixture
def fsl_home(tmp_path: Path) -> Path:
    """An empty directory tree standing in for an FSL installation."""
    root = tmp_path / 'fsl'
    (root / 'bin').mkdir(parents=True)
    return root


@pytest.fixture
def toolkit(fsl_home: Path) -> FSLToolkit:
    return FSLToolkit(fsldir=fsl_home)


@pytest.fixture
def nipype_config():
    """Configure Nipype for testing."""
    from nipype import config

    config.set_default_config()
    config.update_config({'execution': {'remove_unnecessary_outputs': False}})

    yield config

    config.set_default_config()
