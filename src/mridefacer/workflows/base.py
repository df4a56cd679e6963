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
"""Batch execution of the defacing workflow."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import List, Mapping, NamedTuple, Optional, Sequence

from nipype.interfaces import fsl

from mridefacer import annex
from mridefacer.config import DefaceConfig, DefaceData, FSLToolkit
from mridefacer.exceptions import ConfigurationError, PipelineError
from mridefacer.interfaces.images import check_image
from mridefacer.utils.logging import IMPORTANT, get_logger
from mridefacer.utils.paths import (
    DEFACED_SUFFIX,
    canonical_extension,
    copy_image,
    defaced_path,
    existing_variants,
    image_extension,
    image_files,
    mask_path,
    move_image,
    orig_path,
    output_base,
    output_type_for,
    remove_image,
    split_image_ext,
    with_suffix,
)
from mridefacer.workflows.deface import deface_image

LOGGER = get_logger(__name__)


class DefacedImage(NamedTuple):
    """Artifacts written for one input image."""

    source: Path
    mask: Path
    defaced: Optional[Path] = None
    original: Optional[Path] = None
    xfm: Optional[Path] = None
    annexed: bool = False


def check_inputs(in_files: Sequence) -> List[Path]:
    """
    Validate the batch before any processing starts.

    Raises
    ------
    ConfigurationError
        If the batch is empty, or an entry is not a readable image file.
    """
    if not in_files:
        raise ConfigurationError('No input images given')

    checked = []
    for in_file in in_files:
        path = Path(in_file)
        if not image_extension(path):
            raise ConfigurationError(f'Not a NIfTI/Analyze image: {path}')
        if not path.exists():
            raise ConfigurationError(f'Input image does not exist: {path}')
        if not check_image(path):
            raise ConfigurationError(f'Cannot read image: {path}')
        checked.append(path.absolute())
    return checked


def apply_mask(in_file, mask_file, out_file, environ: Optional[Mapping[str, str]] = None) -> Path:
    """
    Multiply ``in_file`` by the binary ``mask_file`` into ``out_file``.

    Raises
    ------
    PipelineError
        If ``fslmaths`` fails or leaves no valid image.
    """
    out_file = Path(out_file)
    output_type = output_type_for(out_file)
    maths = fsl.BinaryMaths(
        in_file=str(in_file),
        operation='mul',
        operand_file=str(mask_file),
        out_file=str(out_file),
        output_type=output_type,
    )
    if environ:
        maths.inputs.environ = dict(environ, FSLOUTPUTTYPE=output_type)
    try:
        maths.run(cwd=str(out_file.parent))
    except Exception as exc:
        raise PipelineError(f'Masking {in_file} failed: {exc}') from exc

    if not check_image(out_file):
        raise PipelineError(f'Masking {in_file} produced no valid image: {out_file}')
    return out_file


def _place_image(src, dst) -> Path:
    """
    Put a workspace image at ``dst``, replacing every variant already there.

    The copy is written under a temporary name beside ``dst`` and verified
    before it is renamed over the destination, so a failed copy leaves the
    existing files untouched.
    """
    dst = Path(dst)
    partial = dst.with_name(f'.partial_{dst.name}')
    try:
        copy_image(src, partial)
    except OSError as exc:
        remove_image(partial)
        raise PipelineError(f'Cannot copy {src} to {dst}: {exc}') from exc
    if not check_image(partial):
        remove_image(partial)
        raise PipelineError(f'Copying {src} produced no valid image at {dst}')

    try:
        move_image(partial, dst)
    except OSError as exc:
        remove_image(partial)
        raise PipelineError(f'Cannot move {partial} to {dst}: {exc}') from exc
    for stale in remove_image(dst, keep=image_files(dst)):
        LOGGER.debug('Removed previous output %s', stale)
    return dst


def _same_image(path_a, path_b) -> bool:
    path_a = Path(path_a).absolute()
    path_b = Path(path_b).absolute()
    return (
        split_image_ext(path_a)[0] == split_image_ext(path_b)[0]
        and canonical_extension(path_a).lower() == canonical_extension(path_b).lower()
    )


def _keep_original(source) -> Path:
    """Rename ``source`` to its ``_orig`` name before it is overwritten."""
    target = orig_path(source)
    previous = existing_variants(target)
    if previous:
        LOGGER.warning(
            'Replacing existing %s with %s; it was kept by an earlier run and may be '
            'the only undefaced copy',
            ', '.join(str(p) for p in previous),
            source,
        )
    try:
        kept = move_image(source, target)
    except OSError as exc:
        raise PipelineError(f'Cannot keep original {source} as {target}: {exc}') from exc
    for stale in remove_image(kept, keep=image_files(kept)):
        LOGGER.debug('Removed previous original %s', stale)
    LOGGER.info('Kept original as %s', kept)
    return kept


def deface_one(
    source: Path,
    index: int,
    *,
    config: DefaceConfig,
    toolkit: FSLToolkit,
    data: DefaceData,
    workspace: Path,
    init_xfm: Optional[Path] = None,
) -> DefacedImage:
    """
    Deface a single image of the batch and place its outputs.

    Parameters
    ----------
    source : Path
        Input image.
    index : int
        Position in the batch, keeps workspace paths unique.
    config : DefaceConfig
        Run settings.
    toolkit : FSLToolkit
        FSL installation.
    data : DefaceData
        Template data files.
    workspace : Path
        Scratch directory of the run.
    init_xfm : Path, optional
        Transform seeding the alignment.

    Returns
    -------
    DefacedImage
        The written artifacts and the alignment matrix of this image.
    """
    source = Path(source)
    use_annex = config.annex
    if use_annex and not annex.is_annex_repo(source):
        LOGGER.warning(
            '%s is not in a git-annex repository, not annexing its outputs', source.parent
        )
        use_annex = False

    output_type = output_type_for(source)
    environ = toolkit.environ(output_type)
    work_base = workspace / f'{index:04d}_{split_image_ext(source)[0].name}'

    result = deface_image(
        source,
        work_base,
        data=data,
        init_xfm=init_xfm,
        # Without a transform to reuse the first image is always aligned
        update_xfm=config.update_xfm or init_xfm is None,
        search_radius=config.search_radius,
        frac=config.frac,
        environ=environ,
    )

    base = output_base(source, config.outdir)
    ext = canonical_extension(source)

    mask = _place_image(result.mask, mask_path(base, ext))
    LOGGER.info('Wrote defacing mask %s', mask)

    defaced = None
    original = source
    if config.produce_defaced:
        masked = apply_mask(
            source, result.mask, with_suffix(work_base, DEFACED_SUFFIX, ext.lower()), environ
        )
        defaced = defaced_path(base, ext, overwrite=config.overwrite)
        if _same_image(defaced, source):
            if config.keep_orig:
                original = _keep_original(source)
            else:
                original = None
        _place_image(masked, defaced)
        LOGGER.info('Wrote defaced image %s', defaced)

    if use_annex:
        if original is not None:
            annex.tag_restricted(original)
        annex.annex_add([p for p in (original, defaced, mask) if p is not None])

    return DefacedImage(
        source=source,
        mask=mask,
        defaced=defaced,
        original=original,
        xfm=result.xfm,
        annexed=use_annex,
    )


def run_batch(
    in_files: Sequence,
    *,
    config: DefaceConfig,
    toolkit: FSLToolkit,
    data: DefaceData,
) -> List[DefacedImage]:
    """
    Deface a batch of images, one after the other, in the given order.

    All intermediate files live in a temporary workspace that is removed
    when the batch ends, whether it completed or failed. The first failing
    image aborts the batch.

    With ``config.use_prev_xfm`` the alignment of each image is seeded
    with the transform estimated for the previous one; otherwise every
    image is aligned from scratch.

    Returns
    -------
    list of DefacedImage
        One entry per input, in input order.
    """
    sources = check_inputs(in_files)
    if config.outdir is not None:
        Path(config.outdir).mkdir(parents=True, exist_ok=True)

    results = []
    with tempfile.TemporaryDirectory(prefix='mridefacer_') as tmpdir:
        workspace = Path(tmpdir)
        LOGGER.debug('Workspace: %s', workspace)

        carry_xfm = None
        for index, source in enumerate(sources):
            if not config.use_prev_xfm:
                carry_xfm = None

            LOGGER.log(IMPORTANT, 'Defacing [%d/%d] %s', index + 1, len(sources), source)
            outputs = deface_one(
                source,
                index,
                config=config,
                toolkit=toolkit,
                data=data,
                workspace=workspace,
                init_xfm=carry_xfm,
            )
            carry_xfm = outputs.xfm
            results.append(outputs)

    LOGGER.log(IMPORTANT, 'Defaced %d image(s)', len(results))
    return results
