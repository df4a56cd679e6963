# emacs: -*- mode: python; py-indent-offset: 4; indent-tabs-mode: nil -*-
# vi: set ft=python sts=4 ts=4 sw=4 et:
"""Image header inspection and validity checks."""

from __future__ import annotations

from pathlib import Path
from typing import NamedTuple

import nibabel as nb
from nibabel.filebasedimages import ImageFileError
from nibabel.spatialimages import HeaderDataError
from nipype.interfaces.base import (
    BaseInterfaceInputSpec,
    File,
    SimpleInterface,
    TraitedSpec,
    traits,
)


class ImageInfo(NamedTuple):
    """Header values the defacing workflow branches on."""

    nvols: int
    voxel_size: float


def get_image_info(in_file) -> ImageInfo:
    """
    Read the number of volumes and the coarsest voxel size of an image.

    ``voxel_size`` is the maximum of the first three pixel dimensions, which
    reorientation only permutes.
    """
    img = nb.load(str(in_file))
    shape = img.shape
    nvols = 1
    for extent in shape[3:]:
        nvols *= int(extent)
    zooms = img.header.get_zooms()[:3]
    return ImageInfo(nvols=max(nvols, 1), voxel_size=float(max(zooms)))


def check_image(in_file) -> bool:
    """
    Return *True* if ``in_file`` is a readable, non-empty image.

    FSL tools may exit cleanly without writing anything, so the exit status
    alone does not prove an output exists.
    """
    path = Path(in_file)
    if not path.is_file():
        return False
    try:
        img = nb.load(str(path))
    except (OSError, EOFError, ValueError, ImageFileError, HeaderDataError):
        return False
    return len(img.shape) >= 3 and all(extent > 0 for extent in img.shape)


class _ValidateImageInputSpec(BaseInterfaceInputSpec):
    in_file = File(mandatory=True, desc='image produced by the previous step')
    step = traits.Str('processing', usedefault=True, desc='name of the producing step')


class _ValidateImageOutputSpec(TraitedSpec):
    out_file = File(exists=True, desc='the validated image, unchanged')


class ValidateImage(SimpleInterface):
    """Fail the workflow when the previous step left no usable image."""

    input_spec = _ValidateImageInputSpec
    output_spec = _ValidateImageOutputSpec

    def _run_interface(self, runtime):
        if not check_image(self.inputs.in_file):
            raise RuntimeError(
                f'{self.inputs.step} produced no valid image: {self.inputs.in_file}'
            )
        self._results['out_file'] = self.inputs.in_file
        return runtime
