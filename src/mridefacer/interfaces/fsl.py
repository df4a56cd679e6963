# emacs: -*- mode: python; py-indent-offset: 4; indent-tabs-mode: nil -*-
# vi: set ft=python sts=4 ts=4 sw=4 et:
"""FSL interface customizations and wrappers."""

import os

import numpy as np
from nipype.interfaces.base import File, TraitedSpec, isdefined
from nipype.interfaces.fsl.base import FSLCommand, FSLCommandInputSpec
from nipype.utils.filemanip import split_filename


class _Reorient2StdMatrixInputSpec(FSLCommandInputSpec):
    """Input specification for Reorient2StdMatrix."""

    in_file = File(
        exists=True,
        mandatory=True,
        argstr='%s',
        position=0,
        desc='image whose reorientation to standard space is computed',
    )
    out_file = File(
        genfile=True,
        hash_files=False,
        desc='text file receiving the 4x4 reorientation matrix',
    )


class _Reorient2StdMatrixOutputSpec(TraitedSpec):
    """Output specification for Reorient2StdMatrix."""

    out_file = File(exists=True, desc='FSL affine matrix (native to standard orientation)')


class Reorient2StdMatrix(FSLCommand):
    """
    Capture the matrix ``fslreorient2std`` would apply.

    Called with only an input image, ``fslreorient2std`` prints the 4x4
    affine mapping the image onto the MNI152 axis orientation instead of
    writing a reoriented image. The stock ``Reorient2Std`` interface cannot
    return that matrix, so this interface writes it to ``out_file``.

    Examples
    --------
    >>> from mridefacer.interfaces.fsl import Reorient2StdMatrix
    >>> r2s = Reorient2StdMatrix()
    >>> r2s.inputs.in_file = 'sub-01_T1w.nii.gz'  # doctest: +SKIP
    >>> r2s.cmdline  # doctest: +SKIP
    'fslreorient2std sub-01_T1w.nii.gz'

    """

    _cmd = 'fslreorient2std'
    input_spec = _Reorient2StdMatrixInputSpec
    output_spec = _Reorient2StdMatrixOutputSpec

    def _run_interface(self, runtime):
        runtime = super()._run_interface(runtime)
        matrix = parse_fsl_matrix(runtime.stdout)
        if matrix is None:
            raise RuntimeError(
                'fslreorient2std did not print a 4x4 matrix for {}:\n{}'.format(
                    self.inputs.in_file, runtime.stdout
                )
            )
        np.savetxt(self._gen_outfilename(), matrix, fmt='%.10f')
        return runtime

    def _gen_outfilename(self):
        out_file = self.inputs.out_file
        if isdefined(out_file):
            return os.path.abspath(out_file)
        _, base, _ = split_filename(self.inputs.in_file)
        return os.path.abspath(f'{base}_2std.mat')

    def _gen_filename(self, name):
        if name == 'out_file':
            return self._gen_outfilename()
        return None

    def _list_outputs(self):
        outputs = self.output_spec().get()
        outputs['out_file'] = self._gen_outfilename()
        return outputs


def parse_fsl_matrix(text):
    """
    Parse a 4x4 FSL affine from command output.

    Returns ``None`` when ``text`` does not hold exactly sixteen numbers.

    Examples
    --------
    >>> parse_fsl_matrix('1 0 0 0\\n0 1 0 0\\n0 0 1 0\\n0 0 0 1\\n').shape
    (4, 4)
    >>> parse_fsl_matrix('Image Exception : #22 :: Failed to read volume') is None
    True

    """
    values = []
    for token in (text or '').split():
        try:
            values.append(float(token))
        except ValueError:
            return None
    if len(values) != 16:
        return None
    return np.array(values).reshape(4, 4)


__all__ = ['Reorient2StdMatrix', 'parse_fsl_matrix']
