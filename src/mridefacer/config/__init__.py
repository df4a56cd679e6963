"""Run configuration, FSL location and template data lookup for mridefacer."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Sequence

from mridefacer.exceptions import ConfigurationError
from mridefacer.utils.logging import get_logger

LOGGER = get_logger(__name__)

CONFIG_DIR = Path(__file__).parent
PACKAGE_DATA_DIR = CONFIG_DIR.parent / 'data'

DATA_DIR_ENV = 'MRIDEFACER_DATA_DIR'
SYSTEM_FSL_CONFIG = Path('/etc/fsl/fsl.sh')

TEMPLATE_FILE = 'head_tmpl.nii.gz'
FACE_MASK_FILE = 'face_teeth_ear_mask.nii.gz'
WEIGHTS_FILE = 'head_tmpl_weights.nii.gz'
DATA_FILES = (TEMPLATE_FILE, FACE_MASK_FILE, WEIGHTS_FILE)

DATA_SEARCH_PATH = (
    PACKAGE_DATA_DIR,
    Path('/usr/share/mridefacer'),
    Path('/usr/local/share/mridefacer'),
)

_FSLDIR_ASSIGNMENT = re.compile(r'^\s*(?:export\s+)?FSLDIR=["\']?([^"\'\s;]+)["\']?')


@dataclass(frozen=True)
class DefaceConfig:
    """
    Immutable settings for one mridefacer run.

    Attributes
    ----------
    apply : bool
        Overwrite each original with its defaced version.
    apply_only : bool
        Write a ``_defaced`` sibling and leave the original untouched.
    keep_orig : bool
        When overwriting, keep the original as ``<name>_orig``.
    outdir : Path | None
        Write outputs here instead of beside each input.
    annex : bool
        Register outputs with git-annex and tag originals.
    use_prev_xfm : bool
        Seed each alignment with the transform of the previous image.
    search_radius : int
        Angular search range (degrees) of the template alignment.
    frac : float
        Fractional intensity threshold of the brain extraction.
    update_xfm : bool
        Re-estimate the alignment even when a seed transform is given.
        ``False`` reuses the seed as-is.
    """

    apply: bool = False
    apply_only: bool = False
    keep_orig: bool = False
    outdir: Optional[Path] = None
    annex: bool = False
    use_prev_xfm: bool = False
    search_radius: int = 90
    frac: float = 0.5
    update_xfm: bool = True

    def __post_init__(self):
        if self.apply and self.apply_only:
            raise ConfigurationError('--apply and --apply-only are mutually exclusive')
        if self.keep_orig and not self.apply:
            raise ConfigurationError('--keep-orig only makes sense together with --apply')
        if not 0 < self.frac < 1:
            raise ConfigurationError(f'brain extraction fraction must be in (0, 1), got {self.frac}')
        if not 0 <= self.search_radius <= 180:
            raise ConfigurationError(
                f'search radius must be within [0, 180] degrees, got {self.search_radius}'
            )
        if not self.update_xfm and not self.use_prev_xfm:
            raise ConfigurationError(
                'reusing a transform without re-alignment requires transform chaining'
            )

    @property
    def produce_defaced(self) -> bool:
        """Whether a defaced image is written in addition to the mask."""
        return self.apply or self.apply_only

    @property
    def overwrite(self) -> bool:
        """Whether the defaced image takes the original's file name."""
        return self.apply


@dataclass(frozen=True)
class FSLToolkit:
    """Location of an FSL installation and the environment to run it."""

    fsldir: Path

    @property
    def bindir(self) -> Path:
        return self.fsldir / 'bin'

    def environ(self, output_type: str = 'NIFTI_GZ') -> Dict[str, str]:
        """
        Environment overrides for nipype FSL interfaces.

        Passed through each interface's ``environ`` input, so the process
        environment is left untouched.
        """
        path = os.environ.get('PATH', '')
        return {
            'FSLDIR': str(self.fsldir),
            'FSLOUTPUTTYPE': output_type,
            'PATH': os.pathsep.join(p for p in (str(self.bindir), path) if p),
        }

    @classmethod
    def resolve(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        system_config: Path = SYSTEM_FSL_CONFIG,
    ) -> 'FSLToolkit':
        """
        Locate FSL.

        The ``FSLDIR`` environment variable wins; otherwise the ``FSLDIR=``
        assignment of the system-wide FSL configuration script is used.

        Raises
        ------
        ConfigurationError
            If neither source names an existing directory.
        """
        environ = os.environ if environ is None else environ

        fsldir = environ.get('FSLDIR')
        origin = 'FSLDIR environment variable'
        if not fsldir:
            fsldir = read_fsldir(system_config)
            origin = str(system_config)

        if not fsldir:
            raise ConfigurationError(
                'FSL installation not found: set FSLDIR or provide '
                f'a system-wide configuration at {system_config}'
            )

        fsldir = Path(fsldir)
        if not fsldir.is_dir():
            raise ConfigurationError(f'FSLDIR from {origin} is not a directory: {fsldir}')

        LOGGER.debug('Using FSL at %s (from %s)', fsldir, origin)
        return cls(fsldir=fsldir)


def read_fsldir(config_file: Path) -> Optional[str]:
    """Return the ``FSLDIR`` assigned in a shell configuration file, if any."""
    config_file = Path(config_file)
    if not config_file.is_file():
        return None
    fsldir = None
    for line in config_file.read_text().splitlines():
        match = _FSLDIR_ASSIGNMENT.match(line)
        if match:
            fsldir = match.group(1)
    return fsldir


@dataclass(frozen=True)
class DefaceData:
    """The fixed template images used to compute each mask."""

    template: Path
    face_mask: Path
    weights: Path

    @classmethod
    def from_dir(cls, data_dir: Path) -> 'DefaceData':
        data_dir = Path(data_dir)
        return cls(
            template=data_dir / TEMPLATE_FILE,
            face_mask=data_dir / FACE_MASK_FILE,
            weights=data_dir / WEIGHTS_FILE,
        )


def find_data_dir(
    environ: Optional[Mapping[str, str]] = None,
    search_path: Sequence[Path] = DATA_SEARCH_PATH,
) -> Path:
    """
    Find the directory holding the template, face mask and weights.

    ``MRIDEFACER_DATA_DIR`` replaces the search path when set.

    Raises
    ------
    ConfigurationError
        If no candidate directory holds all the data files.
    """
    environ = os.environ if environ is None else environ

    override = environ.get(DATA_DIR_ENV)
    candidates = [Path(override)] if override else [Path(p) for p in search_path]

    for candidate in candidates:
        if all((candidate / fname).is_file() for fname in DATA_FILES):
            LOGGER.debug('Using template data from %s', candidate)
            return candidate

    raise ConfigurationError(
        'Cannot find template data files ({}) in: {}'.format(
            ', '.join(DATA_FILES), ', '.join(str(c) for c in candidates)
        )
    )


__all__ = [
    'DefaceConfig',
    'DefaceData',
    'FSLToolkit',
    'find_data_dir',
    'read_fsldir',
]
