"""Ad-hoc site test endpoint."""
import dataclasses

from fastapi import APIRouter, Depends

from ..dependencies import get_analyzer
from ..schemas.site_test import SiteReportResponse, SiteTestRequest
from ..services.analyzer import SiteAnalyzer

router = APIRouter(prefix="/api/test-site", tags=["site-test"])


@router.post("", response_model=SiteReportResponse)
async def test_site(request: SiteTestRequest, analyzer: SiteAnalyzer = Depends(get_analyzer)):
    """Run a one-shot deep analysis of a URL. Nothing is stored.

    Unreachable or invalid URLs still produce a (down, grade F) report.
    """
    report = await analyzer.analyze(request.url.strip())
    return SiteReportResponse.model_validate(dataclasses.asdict(report))
