import pytest


@pytest.fixture(scope="session", autouse=True)
def _resolve_pytest_basetemp(tmp_path_factory):
    # Resolve pytest's tmp_path root before any evaluator swaps TMPDIR/tempfile.tempdir.
    tmp_path_factory.getbasetemp()
