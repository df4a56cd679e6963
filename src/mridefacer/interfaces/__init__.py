# emacs: -*- mode: python; py-indent-offset: 4; indent-tabs-mode: nil -*-
# vi: set ft=python sts=4 ts=4 sw=4 et:
"""mridefacer interfaces and wrappers."""

from .fsl import Reorient2StdMatrix, parse_fsl_matrix  # noqa: F401
from .images import ImageInfo, ValidateImage, check_image, get_image_info  # noqa: F401

__all__ = [
    'ImageInfo',
    'Reorient2StdMatrix',
    'ValidateImage',
    'check_image',
    'get_image_info',
    'parse_fsl_matrix',
]
