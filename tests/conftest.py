import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from pricing_settings import PricingSettings  # noqa: E402
from proposal_workflow import RenderedProposal  # noqa: E402
from tier_pricing import build_pricing_input  # noqa: E402


@pytest.fixture
def settings():
    return PricingSettings()


@pytest.fixture
def basic_input(settings):
    """The measurement form's defaults: 2500 sq ft, 6/12, moderate, one story."""
    return build_pricing_input(
        roof_area=2500,
        pitch="6/12",
        complexity="moderate",
        stories=1,
        waste_percentage=10,
        overhead_percentage=15,
        profit_margins={"good": 25, "better": 30, "best": 35},
        settings=settings,
    )


@pytest.fixture
def renderer():
    mock = AsyncMock()
    mock.render_proposal.return_value = RenderedProposal(proposal_id="est-001", html_preview="<html></html>")
    return mock


@pytest.fixture
def sender():
    mock = AsyncMock()
    mock.send_proposal.return_value = True
    return mock
