"""Output path construction for defacing artifacts."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import List, Optional, Tuple

# Longest first, so ``.nii.gz`` wins over ``.gz``-less ``.nii``.
IMAGE_EXTENSIONS = ('.nii.gz', '.nii', '.hdr', '.img')

OUTPUT_TYPES = {
    '.nii.gz': 'NIFTI_GZ',
    '.nii': 'NIFTI',
    '.hdr': 'NIFTI_PAIR',
    '.img': 'NIFTI_PAIR',
}

MASK_SUFFIX = '_defacemask'
DEFACED_SUFFIX = '_defaced'
ORIG_SUFFIX = '_orig'


def split_image_ext(path) -> Tuple[Path, str]:
    """
    Split an image path into its base path and image-format extension.

    Examples
    --------
    >>> split_image_ext('/data/sub-01_T1w.nii.gz')
    (PosixPath('/data/sub-01_T1w'), '.nii.gz')
    >>> split_image_ext('scan.hdr')
    (PosixPath('scan'), '.hdr')
    >>> split_image_ext('notes.txt')
    (PosixPath('notes.txt'), '')
    """
    path = Path(path)
    name = path.name
    for ext in IMAGE_EXTENSIONS:
        if name.lower().endswith(ext) and len(name) > len(ext):
            return path.with_name(name[: -len(ext)]), name[-len(ext):]
    return path, ''


def strip_image_ext(path) -> Path:
    """Return ``path`` without its image-format extension."""
    return split_image_ext(path)[0]


def image_extension(path) -> str:
    """Return the image-format extension of ``path`` (``''`` if unknown)."""
    return split_image_ext(path)[1]


def output_type_for(path) -> str:
    """Return the FSL output type that reproduces the extension of ``path``."""
    ext = image_extension(path).lower()
    return OUTPUT_TYPES.get(ext, 'NIFTI_GZ')


def canonical_extension(path) -> str:
    """
    Extension of the file FSL writes for the output type of ``path``.

    The spelling of the source is kept, so ``A.NII.GZ`` maps onto itself;
    the ``.img`` half of a pair is named through its header.
    """
    ext = image_extension(path)
    if ext.lower() == '.img':
        return pair_extension(ext)
    return ext or '.nii.gz'


def pair_extension(ext: str) -> str:
    """
    The other half of a NIfTI pair extension, in the same letter case.

    Examples
    --------
    >>> pair_extension('.hdr')
    '.img'
    >>> pair_extension('.IMG')
    '.HDR'
    """
    other = '.img' if ext.lower() == '.hdr' else '.hdr'
    return other.upper() if ext[1:].isupper() else other


def output_base(source, outdir: Optional[Path] = None) -> Path:
    """
    Base path (no extension) under which outputs for ``source`` are written.

    Outputs go beside the source unless ``outdir`` is given, in which case
    only the source's base file name is kept.

    Examples
    --------
    >>> output_base('/data/sub-01/anat/T1w.nii.gz')
    PosixPath('/data/sub-01/anat/T1w')
    >>> output_base('/data/sub-01/anat/T1w.nii.gz', Path('/tmp/out'))
    PosixPath('/tmp/out/T1w')
    """
    base = strip_image_ext(source)
    if outdir is not None:
        return Path(outdir) / base.name
    return base


def with_suffix(base, suffix: str, ext: str) -> Path:
    """Append ``suffix`` and ``ext`` to the file name of ``base``."""
    base = Path(base)
    return base.with_name(f'{base.name}{suffix}{ext}')


def mask_path(base, ext: str) -> Path:
    """Path of the defacing mask for output base ``base``."""
    return with_suffix(base, MASK_SUFFIX, ext)


def defaced_path(base, ext: str, overwrite: bool) -> Path:
    """
    Path of the defaced image.

    When ``overwrite`` is set the defaced image takes the original's name,
    otherwise it is a ``_defaced`` sibling.
    """
    return with_suffix(base, '' if overwrite else DEFACED_SUFFIX, ext)


def orig_path(source) -> Path:
    """Path under which a kept original is stored, beside the source."""
    base, ext = split_image_ext(source)
    return with_suffix(base, ORIG_SUFFIX, ext)


def image_variants(path) -> List[Path]:
    """All files that may back the image whose base name is that of ``path``."""
    base = strip_image_ext(path)
    return [with_suffix(base, '', ext) for ext in IMAGE_EXTENSIONS]


def existing_variants(path) -> List[Path]:
    """
    Files on disk backing the image whose base name is that of ``path``.

    Extensions match regardless of letter case (``A.nii.gz`` and
    ``A.NII.GZ``); the base name must match exactly.
    """
    base = strip_image_ext(path)
    if not base.parent.is_dir():
        return []
    found = []
    for candidate in sorted(base.parent.iterdir()):
        cand_base, cand_ext = split_image_ext(candidate)
        if cand_ext and cand_base.name == base.name and (
            candidate.is_file() or candidate.is_symlink()
        ):
            found.append(candidate)
    return found


def remove_image(path, keep=()) -> List[Path]:
    """
    Remove every extension variant of an image.

    Parameters
    ----------
    path : path
        Any variant of the image.
    keep : iterable of path
        Files that are left in place, also when the filesystem spells
        them differently.

    Returns
    -------
    list[Path]
        The files that existed and were removed.
    """
    keep = {Path(p) for p in keep}
    removed = []
    for candidate in existing_variants(path):
        if any(candidate == k or (k.exists() and candidate.samefile(k)) for k in keep):
            continue
        candidate.unlink()
        removed.append(candidate)
    return removed


def image_files(path) -> List[Path]:
    """The file(s) making up one image, both halves for a NIfTI pair."""
    path = Path(path)
    base, ext = split_image_ext(path)
    if ext.lower() in ('.hdr', '.img'):
        return [path, with_suffix(base, '', pair_extension(ext))]
    return [path]


def move_image(src, dst) -> Path:
    """
    Rename an image, including the ``.img`` half of a NIfTI pair.

    ``dst`` is an image path whose extension is ignored; the source's own
    extension is preserved. Existing files at the target are replaced.
    """
    dst_base = strip_image_ext(dst)
    moved = None
    for source_file in image_files(src):
        ext = split_image_ext(source_file)[1]
        target_file = with_suffix(dst_base, '', ext)
        source_file.replace(target_file)
        if moved is None:
            moved = target_file
    return moved


def copy_image(src, dst) -> Path:
    """
    Copy an image to ``dst``, including the ``.img`` half of a NIfTI pair.

    ``dst`` keeps its own extension, which should match the source's format.
    """
    src = Path(src)
    dst = Path(dst)
    dst.parent.mkdir(parents=True, exist_ok=True)
    for src_file, dst_file in zip(image_files(src), image_files(dst)):
        shutil.copyfile(src_file, dst_file)
    return dst
