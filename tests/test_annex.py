"""Tests for git-annex registration."""

from __future__ import annotations

import subprocess
from errno import ENOENT

import pytest

from mridefacer import annex
from mridefacer.exceptions import AnnexError


class FakeGit:
    """Records ``git`` invocations and answers them from a table of responses."""

    def __init__(self, responses=None):
        self.calls = []
        self.cwds = []
        self.responses = responses or {}

    def __call__(self, cmd, **kwargs):
        args = cmd[3:]
        self.cwds.append(cmd[2])
        self.calls.append(args)
        for prefix, (code, out) in self.responses.items():
            if tuple(args[: len(prefix)]) == prefix:
                return subprocess.CompletedProcess(cmd, code, stdout=out, stderr='')
        return subprocess.CompletedProcess(cmd, 0, stdout='', stderr='')


@pytest.fixture
def fake_git(monkeypatch):
    def _install(responses=None):
        fake = FakeGit(responses)
        monkeypatch.setattr(annex.subprocess, 'run', fake)
        return fake

    return _install


class TestRepositoryDetection:
    """Tests for is_annex_repo."""

    def test_annex_repo(self, tmp_path, fake_git):
        git = fake_git({('config', '--get', 'annex.uuid'): (0, '0c4f9bd2-1234\n')})
        assert annex.is_annex_repo(tmp_path)
        assert git.calls == [['config', '--get', 'annex.uuid']]

    def test_plain_directory(self, tmp_path, fake_git):
        fake_git({('config', '--get', 'annex.uuid'): (1, '')})
        assert not annex.is_annex_repo(tmp_path)

    def test_git_not_installed(self, tmp_path, monkeypatch):
        def _missing(cmd, **kwargs):
            raise FileNotFoundError(ENOENT, 'No such file or directory', 'git')

        monkeypatch.setattr(annex.subprocess, 'run', _missing)
        assert not annex.is_annex_repo(tmp_path)

    def test_file_uses_its_directory(self, t1w_file, fake_git):
        git = fake_git({('config',): (0, 'uuid\n')})
        annex.is_annex_repo(t1w_file)
        assert git.cwds == [str(t1w_file.parent)]


class TestAnnexAdd:
    """Tests for adding artifacts."""

    def test_adds_sidecars(self, t1w_file, fake_git):
        sidecar = t1w_file.parent / 'sub-01_T1w.json'
        sidecar.write_text('{}')
        git = fake_git()

        added = annex.annex_add([t1w_file])

        assert added == [sidecar, t1w_file]
        assert git.calls == [['annex', 'add', 'sub-01_T1w.json', 'sub-01_T1w.nii.gz']]

    def test_other_outputs_not_included(self, t1w_file, fake_git):
        (t1w_file.parent / 'sub-01_T1w_defacemask.nii.gz').write_bytes(b'x')
        fake_git()

        assert annex.annex_add([t1w_file]) == [t1w_file]

    def test_pattern_characters_in_name(self, tmp_path, fake_git):
        image = tmp_path / 'sub-01_T1w[run-1].nii.gz'
        image.write_bytes(b'x')
        fake_git()

        assert annex.annex_add([image]) == [image]

    def test_missing_artifact(self, tmp_path, fake_git):
        fake_git()
        with pytest.raises(AnnexError, match='missing'):
            annex.annex_add([tmp_path / 'sub-01_T1w_defacemask.nii.gz'])

    def test_failed_add_warns(self, t1w_file, fake_git, caplog):
        fake_git({('annex', 'add'): (1, '')})

        assert annex.annex_add([t1w_file]) == []
        assert 'git annex add failed' in caplog.text


class TestTagRestricted:
    """Tests for marking originals as sensitive."""

    def test_sets_tag(self, t1w_file, fake_git):
        git = fake_git({('annex', 'lookupkey'): (0, 'SHA256E-s1--abc.nii.gz\n')})

        assert annex.tag_restricted(t1w_file)
        assert git.calls[-1] == [
            'annex', 'metadata', '-s', 'distribution-restrictions=sensitive', 'sub-01_T1w.nii.gz'
        ]

    def test_keeps_existing_value(self, t1w_file, fake_git, caplog):
        git = fake_git({
            ('annex', 'lookupkey'): (0, 'SHA256E-s1--abc.nii.gz\n'),
            ('annex', 'metadata', '--get'): (0, 'public\n'),
        })

        assert not annex.tag_restricted(t1w_file)
        assert not any('-s' in call for call in git.calls)
        assert 'Not overwriting existing distribution-restrictions=public' in caplog.text

    def test_adds_unannexed_file_first(self, t1w_file, fake_git):
        git = fake_git({('annex', 'lookupkey'): (1, '')})

        assert annex.tag_restricted(t1w_file)
        commands = [call[:2] for call in git.calls]
        assert commands.index(['annex', 'add']) < commands.index(['annex', 'metadata'])

    def test_failed_tag_warns(self, t1w_file, fake_git, caplog):
        fake_git({
            ('annex', 'lookupkey'): (0, 'key\n'),
            ('annex', 'metadata', '-s'): (1, ''),
        })

        assert not annex.tag_restricted(t1w_file)
        assert 'Cannot tag' in caplog.text
