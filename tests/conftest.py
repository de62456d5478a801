import io

import pytest
from rich.console import Console

from docrun.report import Reporter


@pytest.fixture
def reporter():
    return Reporter(console=Console(file=io.StringIO(), width=200))


