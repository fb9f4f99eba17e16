import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = str(Path(__file__).parent.parent)
if project_root not in sys.path:
    sys.path.append(project_root)

from infrastructure.config import build_stage_configurations  # noqa: E402

PIPELINE_ACCOUNT = "111111111111"
BETA_ACCOUNT = "222222222222"
PROD_ACCOUNT = "333333333333"


@pytest.fixture
def stage_configs():
    return build_stage_configurations(BETA_ACCOUNT, PROD_ACCOUNT)


@pytest.fixture
def account_env(monkeypatch):
    monkeypatch.setenv("PIPELINE_ACCOUNT_ID", PIPELINE_ACCOUNT)
    monkeypatch.setenv("BETA_ACCOUNT_ID", BETA_ACCOUNT)
    monkeypatch.setenv("PROD_ACCOUNT_ID", PROD_ACCOUNT)
