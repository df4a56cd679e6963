"""Command-line interface for mridefacer."""

from __future__ import annotations

import sys
import warnings
from argparse import ArgumentParser, RawTextHelpFormatter
from pathlib import Path
from typing import List, Optional

VERBOSE_HELP = """
How it works
------------
Each image is reoriented to the standard orientation, the brain is extracted
from its first volume with BET, and a head template is aligned to it with
FLIRT (12 DOF, correlation ratio). The face, ear and teeth mask of the
template is projected back onto the image and thresholded, giving
<name>_defacemask.<ext> beside the input (or in --outdir).

With --apply-only the masked image is written as <name>_defaced.<ext>;
with --apply it replaces the input, optionally keeping the input as
<name>_orig.<ext> (--keep-orig). Existing masks are replaced.

Images are processed in the given order. With --use-prev-xfm the alignment
of each image starts from the transform found for the previous one, which
helps with series of images of the same head. Without it, results do not
depend on the order or composition of the batch.

Environment
-----------
FSLDIR               FSL installation (falls back to /etc/fsl/fsl.sh)
MRIDEFACER_DATA_DIR  directory holding head_tmpl.nii.gz,
                     face_teeth_ear_mask.nii.gz and head_tmpl_weights.nii.gz

git-annex
---------
With --annex, outputs are added to the annex of the dataset holding each
input, and originals get the metadata distribution-restrictions=sensitive
unless a restriction is already set. Inputs outside an annex are processed
without annexing.
"""


def main(argv: Optional[List[str]] = None) -> int:
    """Set an entrypoint for mridefacer."""
    argv = sys.argv[1:] if argv is None else argv

    # Handle --version and --verbose-help early (no positional arguments needed)
    if '--version' in argv:
        from mridefacer import __version__
        print(f'mridefacer {__version__}')
        return 0

    if '--verbose-help' in argv:
        get_parser().print_help()
        print(VERBOSE_HELP)
        return 0

    opts = get_parser().parse_args(argv)
    return build_opts(opts)


def get_parser():
    """Build parser object."""
    parser = ArgumentParser(
        description='mridefacer: remove face, ears and teeth from MRI volumes',
        formatter_class=RawTextHelpFormatter,
    )

    parser.add_argument(
        'in_files',
        metavar='IMAGE',
        nargs='+',
        type=Path,
        help='one or more NIfTI/Analyze images, processed in the given order',
    )

    parser.add_argument(
        '--version',
        action='store_true',
        help='show program\'s version number and exit',
    )
    parser.add_argument(
        '--verbose-help',
        action='store_true',
        help='show this help, followed by a description of the procedure, and exit',
    )

    g_out = parser.add_argument_group('Output options')
    g_apply = g_out.add_mutually_exclusive_group()
    g_apply.add_argument(
        '--apply',
        action='store_true',
        help='overwrite each input with its defaced version',
    )
    g_apply.add_argument(
        '--apply-only',
        action='store_true',
        help='write the defaced version as <name>_defaced, never overwrite the input',
    )
    g_out.add_argument(
        '--keep-orig',
        action='store_true',
        help='with --apply, keep each input as <name>_orig',
    )
    g_out.add_argument(
        '--outdir',
        metavar='PATH',
        type=Path,
        default=None,
        help='write outputs to this directory instead of beside each input',
    )

    g_proc = parser.add_argument_group('Processing options')
    g_proc.add_argument(
        '--use-prev-xfm',
        action='store_true',
        help='seed the alignment of each image with the transform of the previous one',
    )
    g_proc.add_argument(
        '--search-radius',
        metavar='DEG',
        type=int,
        default=90,
        help='rotational search range of the template alignment, in degrees (default: 90)',
    )
    g_proc.add_argument(
        '--frac',
        metavar='F',
        type=float,
        default=0.5,
        help='fractional intensity threshold of the brain extraction (default: 0.5)',
    )
    g_proc.add_argument(
        '--annex',
        action='store_true',
        help='register outputs with git-annex and tag originals as sensitive',
    )

    g_other = parser.add_argument_group('Other options')
    g_other.add_argument(
        '-v',
        '--verbose',
        dest='verbose_count',
        action='count',
        default=0,
        help='increases log verbosity for each occurrence, debug level is -vv',
    )
    g_other.add_argument(
        '--no-color',
        action='store_true',
        help='do not colorize log messages',
    )

    return parser


def build_opts(opts) -> int:
    """Resolve the environment and run the batch described by ``opts``."""
    from mridefacer.config import DefaceConfig, DefaceData, FSLToolkit, find_data_dir
    from mridefacer.exceptions import MridefacerError
    from mridefacer.utils.logging import IMPORTANT, get_logger, setup_logging
    from mridefacer.workflows.base import run_batch

    setup_logging(opts.verbose_count, color=False if opts.no_color else None)
    logger = get_logger('cli')

    def _warn_redirect(message, category, filename, lineno, file=None, line=None):
        logger.warning('Captured warning (%s): %s', category, message)

    warnings.showwarning = _warn_redirect

    try:
        config = DefaceConfig(
            apply=opts.apply,
            apply_only=opts.apply_only,
            keep_orig=opts.keep_orig,
            outdir=opts.outdir.absolute() if opts.outdir else None,
            annex=opts.annex,
            use_prev_xfm=opts.use_prev_xfm,
            search_radius=opts.search_radius,
            frac=opts.frac,
        )
        toolkit = FSLToolkit.resolve()
        data = DefaceData.from_dir(find_data_dir())

        run_batch(opts.in_files, config=config, toolkit=toolkit, data=data)
    except MridefacerError as exc:
        logger.critical('%s', exc)
        return 1

    logger.log(IMPORTANT, 'mridefacer finished without errors')
    return 0


if __name__ == '__main__':
    raise RuntimeError(
        'mridefacer/cli.py should not be run directly;\n'
        'Please `pip install` mridefacer and use the `mridefacer` command'
    )
