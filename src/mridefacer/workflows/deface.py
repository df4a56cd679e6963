# emacs: -*- mode: python; py-indent-offset: 4; indent-tabs-mode: nil -*-
# vi: set ft=python sts=4 ts=4 sw=4 et:
#
# Copyright 2026 The mridefacer Developers
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
"""Per-image defacing mask workflow."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, NamedTuple, Optional

from nipype.interfaces import fsl, utility as niu
from nipype.pipeline import engine as pe
from niworkflows.engine.workflows import LiterateWorkflow as Workflow

from mridefacer.config import DefaceData
from mridefacer.exceptions import ConfigurationError, PipelineError
from mridefacer.interfaces.fsl import Reorient2StdMatrix
from mridefacer.interfaces.images import ValidateImage, check_image, get_image_info
from mridefacer.utils.logging import get_logger
from mridefacer.utils.paths import MASK_SUFFIX, image_variants, output_type_for, with_suffix

LOGGER = get_logger(__name__)

#: Images coarser than this (mm) are aligned without subsampling.
SUBSAMPLE_THRESHOLD = 2.1
XFM_SUFFIX = '_xfm'


class DefaceResult(NamedTuple):
    """Files left in the workspace by :func:`deface_image`."""

    mask: Path
    xfm: Optional[Path]


def _fsl_node(interface, name, environ=None):
    """Wrap an FSL interface in a node running under ``environ``."""
    node = pe.Node(interface, name=name)
    if environ:
        env = dict(environ)
        output_type = getattr(interface.inputs, 'output_type', None)
        if output_type:
            env['FSLOUTPUTTYPE'] = output_type
        node.inputs.environ = env
    return node


def _copy_output(in_file, out_base, suffix):
    """Copy ``in_file`` to ``<out_base><suffix><ext>``."""
    from pathlib import Path

    from mridefacer.utils.paths import copy_image, split_image_ext, with_suffix

    in_file = Path(in_file)
    ext = split_image_ext(in_file)[1] or in_file.suffix
    return str(copy_image(in_file, with_suffix(out_base, suffix, ext)))


def init_deface_wf(
    *,
    data: DefaceData,
    nvols: int = 1,
    voxel_size: float = 1.0,
    search_radius: int = 90,
    frac: float = 0.5,
    update_xfm: bool = True,
    seed_xfm: bool = False,
    output_type: str = 'NIFTI_GZ',
    environ: Optional[Mapping[str, str]] = None,
    name: str = 'deface_wf',
) -> Workflow:
    """
    Build the workflow computing the defacing mask of one image.

    The head template is aligned to the brain-extracted reference volume of
    the input (in standard orientation), its face/ear/teeth mask is carried
    through that alignment and back to the native orientation of the input,
    and the result is binarized.

    Branches that depend on image content are resolved when the workflow
    is built, from header values (see
    :func:`~mridefacer.interfaces.images.get_image_info`).

    Parameters
    ----------
    data : DefaceData
        Template, face mask and alignment weights.
    nvols : int
        Number of volumes of the input. Only the first volume of a
        multi-volume image is used as reference.
    voxel_size : float
        Coarsest voxel dimension of the input (mm). At or below
        ``SUBSAMPLE_THRESHOLD`` the extracted brain is subsampled by two
        before alignment.
    search_radius : int
        Rotational search range (+/- degrees) about each axis.
    frac : float
        Fractional intensity threshold of the brain extraction.
    update_xfm : bool
        Estimate a new alignment. When ``False`` the transform given at
        ``inputnode.init_xfm`` is used unchanged and no alignment runs.
    seed_xfm : bool
        Initialize the alignment with ``inputnode.init_xfm``.
    output_type : str
        FSL output type of the final mask.
    environ : mapping, optional
        Environment for FSL commands (see
        :meth:`~mridefacer.config.FSLToolkit.environ`).
    name : str
        Workflow name.

    Returns
    -------
    Workflow
        The workflow object.

    Inputs
    ------
    in_file
        Image to deface.
    init_xfm
        Transform seeding (or, without ``update_xfm``, replacing) the alignment.
    out_base
        Base path receiving ``<out_base>_defacemask<ext>`` and
        ``<out_base>_xfm.mat``.

    Outputs
    -------
    out_mask
        Binary mask, 1 where voxels are kept.
    out_xfm
        Template-to-image alignment matrix.
    """
    if not update_xfm and not seed_xfm:
        raise ConfigurationError('reusing a transform requires one to be supplied')

    workflow = Workflow(name=name)
    workflow.__desc__ = """\
Facial features were removed with a template-based mask.
The image was reoriented to the standard orientation and the brain was
extracted from its reference volume with *BET* (FSL; fractional intensity
threshold {frac}).
A head template was aligned to the extracted brain with *FLIRT*
(12 degrees of freedom, correlation ratio, +/-{radius} degree search),
and the face, ear and teeth mask of the template was projected onto the
image through that alignment and thresholded at 0.5.
""".format(frac=frac, radius=search_radius)

    inputnode = pe.Node(
        niu.IdentityInterface(fields=['in_file', 'init_xfm', 'out_base']),
        name='inputnode',
    )
    outputnode = pe.Node(
        niu.IdentityInterface(fields=['out_mask', 'out_xfm']),
        name='outputnode',
    )

    # Standard orientation and the matrices to and from it
    reorient = _fsl_node(fsl.Reorient2Std(output_type='NIFTI_GZ'), 'reorient', environ)
    reorient_check = pe.Node(ValidateImage(step='reorientation'), name='reorient_check')
    reorient_mat = _fsl_node(Reorient2StdMatrix(output_type='NIFTI_GZ'), 'reorient_mat', environ)
    invert_mat = _fsl_node(
        fsl.ConvertXFM(invert_xfm=True, output_type='NIFTI_GZ'), 'invert_mat', environ
    )

    skullstrip = _fsl_node(fsl.BET(frac=frac, output_type='NIFTI_GZ'), 'skullstrip', environ)
    skullstrip_check = pe.Node(ValidateImage(step='brain extraction'), name='skullstrip_check')

    workflow.connect([
        (inputnode, reorient, [('in_file', 'in_file')]),
        (inputnode, reorient_mat, [('in_file', 'in_file')]),
        (reorient, reorient_check, [('out_file', 'in_file')]),
        (reorient_mat, invert_mat, [('out_file', 'in_file')]),
        (skullstrip, skullstrip_check, [('out_file', 'in_file')]),
    ])

    if nvols > 1:
        # First volume rather than an average keeps the reference cheap
        ref_vol = _fsl_node(
            fsl.ExtractROI(t_min=0, t_size=1, output_type='NIFTI_GZ'), 'ref_vol', environ
        )
        workflow.connect([(reorient_check, ref_vol, [('out_file', 'in_file')])])
        reference = (ref_vol, 'roi_file')
    else:
        reference = (reorient_check, 'out_file')

    workflow.connect([(reference[0], skullstrip, [(reference[1], 'in_file')])])

    if voxel_size > SUBSAMPLE_THRESHOLD:
        align_target = (skullstrip_check, 'out_file')
    else:
        subsample = _fsl_node(
            fsl.ImageMaths(op_string='-subsamp2', output_type='NIFTI_GZ'), 'subsample', environ
        )
        workflow.connect([(skullstrip_check, subsample, [('out_file', 'in_file')])])
        align_target = (subsample, 'out_file')

    if update_xfm:
        align = _fsl_node(
            fsl.FLIRT(
                in_file=str(data.template),
                in_weight=str(data.weights),
                dof=12,
                cost='corratio',
                bins=256,
                searchr_x=[-search_radius, search_radius],
                searchr_y=[-search_radius, search_radius],
                searchr_z=[-search_radius, search_radius],
                output_type='NIFTI_GZ',
            ),
            'align',
            environ,
        )
        workflow.connect([(align_target[0], align, [(align_target[1], 'reference')])])
        if seed_xfm:
            workflow.connect([(inputnode, align, [('init_xfm', 'in_matrix_file')])])
        xfm = (align, 'out_matrix_file')
    else:
        xfm = (inputnode, 'init_xfm')

    mask_std = _fsl_node(
        fsl.ApplyXFM(
            in_file=str(data.face_mask),
            apply_xfm=True,
            interp='trilinear',
            output_type='NIFTI_GZ',
        ),
        'mask_std',
        environ,
    )
    mask_native = _fsl_node(
        fsl.ApplyXFM(apply_xfm=True, interp='trilinear', output_type='NIFTI_GZ'),
        'mask_native',
        environ,
    )
    binarize = _fsl_node(
        fsl.ImageMaths(op_string='-thr 0.5 -bin', out_data_type='char', output_type=output_type),
        'binarize',
        environ,
    )
    mask_check = pe.Node(ValidateImage(step='mask thresholding'), name='mask_check')

    ds_mask = pe.Node(
        niu.Function(
            function=_copy_output,
            input_names=['in_file', 'out_base', 'suffix'],
            output_names=['out_file'],
        ),
        name='ds_mask',
        run_without_submitting=True,
    )
    ds_mask.inputs.suffix = MASK_SUFFIX
    ds_xfm = pe.Node(
        niu.Function(
            function=_copy_output,
            input_names=['in_file', 'out_base', 'suffix'],
            output_names=['out_file'],
        ),
        name='ds_xfm',
        run_without_submitting=True,
    )
    ds_xfm.inputs.suffix = XFM_SUFFIX

    workflow.connect([
        (reference[0], mask_std, [(reference[1], 'reference')]),
        (xfm[0], mask_std, [(xfm[1], 'in_matrix_file')]),
        (mask_std, mask_native, [('out_file', 'in_file')]),
        (inputnode, mask_native, [('in_file', 'reference')]),
        (invert_mat, mask_native, [('out_file', 'in_matrix_file')]),
        (mask_native, binarize, [('out_file', 'in_file')]),
        (binarize, mask_check, [('out_file', 'in_file')]),
        (mask_check, ds_mask, [('out_file', 'in_file')]),
        (inputnode, ds_mask, [('out_base', 'out_base')]),
        (xfm[0], ds_xfm, [(xfm[1], 'in_file')]),
        (inputnode, ds_xfm, [('out_base', 'out_base')]),
        (ds_mask, outputnode, [('out_file', 'out_mask')]),
        (ds_xfm, outputnode, [('out_file', 'out_xfm')]),
    ])

    return workflow


def deface_image(
    in_file,
    out_base,
    *,
    data: DefaceData,
    init_xfm=None,
    update_xfm: bool = True,
    search_radius: int = 90,
    frac: float = 0.5,
    environ: Optional[Mapping[str, str]] = None,
    work_dir=None,
) -> DefaceResult:
    """
    Compute the defacing mask of ``in_file``.

    The source image is only read. Results are written next to
    ``out_base``, which should lie inside the run's workspace.

    Parameters
    ----------
    in_file : path
        Image to deface.
    out_base : path
        Base path of the outputs (``<out_base>_defacemask<ext>`` and
        ``<out_base>_xfm.mat``).
    data : DefaceData
        Template data files.
    init_xfm : path, optional
        Transform seeding the alignment.
    update_xfm : bool
        Re-estimate the alignment; ``False`` reuses ``init_xfm`` as-is.
    search_radius, frac
        Alignment search range and brain extraction threshold.
    environ : mapping, optional
        FSL environment.
    work_dir : path, optional
        Nipype working directory (default: ``<out_base>_work``).

    Returns
    -------
    DefaceResult
        Paths of the mask and alignment matrix.

    Raises
    ------
    PipelineError
        If any step failed or left no valid output.
    """
    in_file = Path(in_file).absolute()
    out_base = Path(out_base)
    work_dir = Path(work_dir) if work_dir else with_suffix(out_base, '_work', '')
    info = get_image_info(in_file)

    LOGGER.debug(
        'Defacing %s (%d volume(s), %.2f mm voxels%s)',
        in_file,
        info.nvols,
        info.voxel_size,
        ', seeded' if init_xfm else '',
    )

    workflow = init_deface_wf(
        data=data,
        nvols=info.nvols,
        voxel_size=info.voxel_size,
        search_radius=search_radius,
        frac=frac,
        update_xfm=update_xfm,
        seed_xfm=init_xfm is not None,
        output_type=output_type_for(in_file),
        environ=environ,
    )
    workflow.base_dir = str(work_dir)
    workflow.config['execution'] = {
        'stop_on_first_crash': True,
        'crashdump_dir': str(work_dir),
        'crashfile_format': 'txt',
        'remove_unnecessary_outputs': False,
    }
    workflow.inputs.inputnode.in_file = str(in_file)
    workflow.inputs.inputnode.out_base = str(out_base)
    if init_xfm is not None:
        workflow.inputs.inputnode.init_xfm = str(init_xfm)

    try:
        workflow.run(plugin='Linear')
    except Exception as exc:
        raise PipelineError(f'Defacing failed for {in_file}: {exc}') from exc

    mask = next(
        (p for p in image_variants(with_suffix(out_base, MASK_SUFFIX, '.nii.gz'))
         if check_image(p)),
        None,
    )
    if mask is None:
        raise PipelineError(f'No valid defacing mask was produced for {in_file}')

    xfm = with_suffix(out_base, XFM_SUFFIX, '.mat')
    if not xfm.is_file():
        raise PipelineError(f'No alignment matrix was produced for {in_file}')

    return DefaceResult(mask=mask, xfm=xfm)
