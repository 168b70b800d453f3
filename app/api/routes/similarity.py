"""Company similarity endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.responses import envelope_response, error_response, globe_error_response
from app.services.companies import CompanyDataset, get_company_dataset
from app.services.confidence import build_confidence_meta
from app.services.errors import CompanyNotFoundError, GlobeError
from app.services.similarity import DEFAULT_LIMIT, MAX_RESULTS, build_similarity_result

router = APIRouter()
logger = logging.getLogger(__name__)

CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=1800"


@router.get("/similarity")
async def similar_companies(
    company_id: str | None = Query(None, alias="companyId"),
    limit: int = Query(DEFAULT_LIMIT, ge=1, description="Results to return, capped at 10."),
    dataset: CompanyDataset = Depends(get_company_dataset),
) -> JSONResponse:
    if not company_id or not company_id.strip():
        return error_response("Missing companyId parameter", status_code=400)
    try:
        source = dataset.find(company_id.strip())
        result = build_similarity_result(source, dataset.all(), limit=min(limit, MAX_RESULTS))
    except CompanyNotFoundError as exc:
        return error_response("Company not found", status_code=404, details={"companyId": exc.identifier})
    except GlobeError as exc:
        logger.error("similarity.api_error", extra={"company_id": company_id, "code": exc.code})
        return globe_error_response(exc, "Failed to compute similarity")

    meta = build_confidence_meta(
        {
            "sourceCompany": result.source_company.name,
            "similarCount": len(result.similar),
            "topSimilarity": result.similar[0].similarity if result.similar else None,
        },
        "Similarity Engine",
    )
    return envelope_response(result, meta=meta, cache_control=CACHE_CONTROL)
