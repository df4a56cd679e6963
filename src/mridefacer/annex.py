"""
Registration of defacing artifacts with git-annex.

Outputs are added to the annex of the dataset holding their source image,
and originals are tagged so they are not redistributed::

    git annex metadata --get distribution-restrictions sub-01_T1w.nii.gz
    sensitive

Archival is best-effort: a directory outside any annex only disables it for
that image, and failing ``git annex`` calls are reported as warnings. The
exception is an artifact that should exist but does not, which means an
earlier step is broken and aborts the run.
"""

from __future__ import annotations

import glob
import subprocess
from errno import ENOENT
from pathlib import Path
from typing import Iterable, List, Sequence

from mridefacer.exceptions import AnnexError
from mridefacer.utils.logging import get_logger
from mridefacer.utils.paths import strip_image_ext

LOGGER = get_logger(__name__)

RESTRICTION_KEY = 'distribution-restrictions'
RESTRICTION_VALUE = 'sensitive'


def _git(args: Sequence[str], cwd: Path) -> subprocess.CompletedProcess:
    """Run ``git -C <cwd> <args>`` and capture its output as text."""
    return subprocess.run(
        ['git', '-C', str(cwd), *args],
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        universal_newlines=True,
    )


def _directory(path) -> Path:
    path = Path(path)
    return path if path.is_dir() else path.parent


def is_annex_repo(path) -> bool:
    """Return *True* if ``path`` (or its directory) lies in a git-annex repository."""
    try:
        ret = _git(['config', '--get', 'annex.uuid'], _directory(path))
    except OSError as exc:
        if exc.errno == ENOENT:
            LOGGER.debug('git is not installed')
            return False
        raise
    return ret.returncode == 0 and bool(ret.stdout.strip())


def is_annexed(path) -> bool:
    """Return *True* if ``path`` is an annexed file (has a content key)."""
    path = Path(path)
    ret = _git(['annex', 'lookupkey', path.name], path.parent)
    return ret.returncode == 0 and bool(ret.stdout.strip())


def find_artifacts(path) -> List[Path]:
    """
    Files sharing the base name of ``path``.

    For ``sub-01_T1w_defacemask.nii.gz`` this matches the image itself and
    sidecars such as ``sub-01_T1w_defacemask.json``.
    """
    base = strip_image_ext(path)
    if not base.parent.is_dir():
        return []
    pattern = f'{glob.escape(base.name)}.*'
    return sorted(p for p in base.parent.glob(pattern) if p.is_file() or p.is_symlink())


def annex_add(paths: Iterable) -> List[Path]:
    """
    Add artifacts and their sidecars to the annex.

    Raises
    ------
    AnnexError
        If any artifact has no matching file on disk.
    """
    added = []
    for path in paths:
        matches = find_artifacts(path)
        if not matches:
            raise AnnexError(f'Expected artifact is missing, cannot annex: {path}')
        cwd = matches[0].parent
        ret = _git(['annex', 'add', *[m.name for m in matches]], cwd)
        if ret.returncode != 0:
            LOGGER.warning(
                'git annex add failed in %s: %s', cwd, ret.stderr.strip() or ret.stdout.strip()
            )
            continue
        LOGGER.debug('Annexed %s', ', '.join(str(m) for m in matches))
        added.extend(matches)
    return added


def get_restriction(path) -> str:
    """Current ``distribution-restrictions`` value of an annexed file ('' if unset)."""
    path = Path(path)
    ret = _git(['annex', 'metadata', '--get', RESTRICTION_KEY, path.name], path.parent)
    if ret.returncode != 0:
        LOGGER.warning('Cannot read annex metadata of %s: %s', path, ret.stderr.strip())
        return ''
    return ret.stdout.strip()


def tag_restricted(path) -> bool:
    """
    Mark an original image as not redistributable.

    The value is only set when no restriction is present; an existing one
    is kept and reported. Files not yet in the annex are added first so they carry a
    content key to attach metadata to.

    Returns
    -------
    bool
        *True* if the tag was written.
    """
    path = Path(path)
    if not is_annexed(path) and not annex_add([path]):
        return False

    current = get_restriction(path)
    if current:
        LOGGER.warning(
            'Not overwriting existing %s=%s of %s', RESTRICTION_KEY, current, path
        )
        return False

    ret = _git(
        ['annex', 'metadata', '-s', f'{RESTRICTION_KEY}={RESTRICTION_VALUE}', path.name],
        path.parent,
    )
    if ret.returncode != 0:
        LOGGER.warning('Cannot tag %s as %s: %s', path, RESTRICTION_VALUE, ret.stderr.strip())
        return False
    LOGGER.info('Tagged %s with %s=%s', path, RESTRICTION_KEY, RESTRICTION_VALUE)
    return True
