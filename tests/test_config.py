"""Tests for run configuration and environment resolution."""

from __future__ import annotations

import os

import pytest

from mridefacer.config import (
    DATA_DIR_ENV,
    DefaceConfig,
    DefaceData,
    FSLToolkit,
    find_data_dir,
    read_fsldir,
)
from mridefacer.exceptions import ConfigurationError


class TestDefaceConfig:
    """Tests for the immutable run configuration."""

    def test_defaults(self):
        config = DefaceConfig()
        assert config.search_radius == 90
        assert config.frac == 0.5
        assert config.update_xfm is True
        assert config.use_prev_xfm is False
        assert not config.produce_defaced

    def test_frozen(self):
        config = DefaceConfig()
        with pytest.raises(AttributeError):
            config.apply = True

    def test_apply_modes(self):
        assert DefaceConfig(apply=True).overwrite
        assert DefaceConfig(apply=True).produce_defaced
        assert not DefaceConfig(apply_only=True).overwrite
        assert DefaceConfig(apply_only=True).produce_defaced

    @pytest.mark.parametrize(
        'kwargs',
        [
            {'apply': True, 'apply_only': True},
            {'keep_orig': True},
            {'keep_orig': True, 'apply_only': True},
            {'frac': 0.0},
            {'frac': 1.5},
            {'search_radius': 200},
            {'update_xfm': False},
        ],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ConfigurationError):
            DefaceConfig(**kwargs)

    def test_reuse_mode_with_chaining(self):
        config = DefaceConfig(update_xfm=False, use_prev_xfm=True)
        assert not config.update_xfm


class TestFSLToolkit:
    """Tests for locating the FSL installation."""

    def test_from_environment(self, fsl_home, tmp_path):
        toolkit = FSLToolkit.resolve(
            environ={'FSLDIR': str(fsl_home)}, system_config=tmp_path / 'absent.sh'
        )
        assert toolkit.fsldir == fsl_home

    def test_from_system_config(self, fsl_home, tmp_path):
        fsl_sh = tmp_path / 'fsl.sh'
        fsl_sh.write_text(f'# FSL configuration\nFSLDIR={fsl_home}\nexport FSLDIR\n')

        toolkit = FSLToolkit.resolve(environ={}, system_config=fsl_sh)

        assert toolkit.fsldir == fsl_home

    def test_environment_wins(self, fsl_home, tmp_path):
        fsl_sh = tmp_path / 'fsl.sh'
        fsl_sh.write_text('FSLDIR=/does/not/exist\n')

        toolkit = FSLToolkit.resolve(environ={'FSLDIR': str(fsl_home)}, system_config=fsl_sh)

        assert toolkit.fsldir == fsl_home

    def test_missing(self, tmp_path):
        with pytest.raises(ConfigurationError, match='FSLDIR'):
            FSLToolkit.resolve(environ={}, system_config=tmp_path / 'absent.sh')

    def test_not_a_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match='not a directory'):
            FSLToolkit.resolve(
                environ={'FSLDIR': str(tmp_path / 'nope')},
                system_config=tmp_path / 'absent.sh',
            )

    def test_environ(self, toolkit, fsl_home):
        env = toolkit.environ('NIFTI')
        assert env['FSLDIR'] == str(fsl_home)
        assert env['FSLOUTPUTTYPE'] == 'NIFTI'
        assert env['PATH'].split(os.pathsep)[0] == str(fsl_home / 'bin')

    def test_read_fsldir_quoted_export(self, tmp_path):
        fsl_sh = tmp_path / 'fsl.sh'
        fsl_sh.write_text('export FSLDIR="/opt/fsl"\n')
        assert read_fsldir(fsl_sh) == '/opt/fsl'


class TestDataLookup:
    """Tests for finding the template data files."""

    def test_override(self, data_dir):
        assert find_data_dir(environ={DATA_DIR_ENV: str(data_dir)}) == data_dir

    def test_override_is_exclusive(self, data_dir, tmp_path):
        with pytest.raises(ConfigurationError):
            find_data_dir(
                environ={DATA_DIR_ENV: str(tmp_path / 'empty')},
                search_path=[data_dir],
            )

    def test_search_path_order(self, data_dir, tmp_path):
        incomplete = tmp_path / 'incomplete'
        incomplete.mkdir()
        (incomplete / 'head_tmpl.nii.gz').write_bytes(b'')

        found = find_data_dir(environ={}, search_path=[incomplete, data_dir])

        assert found == data_dir

    def test_not_found(self, tmp_path):
        with pytest.raises(ConfigurationError, match='head_tmpl.nii.gz'):
            find_data_dir(environ={}, search_path=[tmp_path])

    def test_deface_data(self, data_dir):
        data = DefaceData.from_dir(data_dir)
        assert data.template == data_dir / 'head_tmpl.nii.gz'
        assert data.face_mask == data_dir / 'face_teeth_ear_mask.nii.gz'
        assert data.weights == data_dir / 'head_tmpl_weights.nii.gz'
        assert all(p.is_file() for p in (data.template, data.face_mask, data.weights))
