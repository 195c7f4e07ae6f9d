import os
from pathlib import Path

import pytest

from common.workdir import preserved_cwd


def test_preserved_cwd_restores_after_side_effect(tmp_path):
    before = Path.cwd()
    with preserved_cwd() as original:
        os.chdir(tmp_path)
        assert original == before
    assert Path.cwd() == before


def test_preserved_cwd_restores_on_error(tmp_path):
    before = Path.cwd()
    with pytest.raises(RuntimeError):
        with preserved_cwd():
            os.chdir(tmp_path)
            raise RuntimeError("parser blew up")
    assert Path.cwd() == before
