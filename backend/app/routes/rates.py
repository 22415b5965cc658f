# /backend/app/routes/rates.py

"""
Reference-rate database diagnostics.

  GET  /database-test?action=test-connection
  GET  /database-test?action=init-database
  GET  /database-test?action=search&search=<term>
  POST /database-test   {"searchTerms": [...]}
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from app.config import settings
from app.database import get_engine, initialize_database, test_connection
from app.models.bill import BatchSearchRequest
from app.services.matcher import SimilarityMatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/database-test", tags=["Reference Rates"])


def _matcher() -> SimilarityMatcher:
    return SimilarityMatcher(get_engine(), threshold=settings.SIMILARITY_THRESHOLD)


@router.get("")
def database_test(
    action: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
):
    if action == "test-connection":
        connected = test_connection(get_engine())
        return {
            "success": connected,
            "message": "Database connection successful" if connected
                       else "Database connection failed",
        }

    if action == "init-database":
        initialized = initialize_database(get_engine())
        return {
            "success": initialized,
            "message": "Database initialized successfully" if initialized
                       else "Database initialization failed",
        }

    if action == "search":
        if not search:
            raise HTTPException(status_code=400, detail="Search term is required")
        return {"searchTerm": search, "result": _matcher().search(search)}

    raise HTTPException(
        status_code=400,
        detail="Invalid action. Use: test-connection, init-database, or search",
    )


@router.post("")
def batch_search(request: BatchSearchRequest):
    if not isinstance(request.search_terms, list):
        raise HTTPException(status_code=400, detail="searchTerms must be an array")

    matcher = _matcher()
    results = [
        {"searchTerm": term, **matcher.search(str(term))}
        for term in request.search_terms
    ]
    logger.info(f"Batch search: {len(results)} terms")
    return {"success": True, "results": results}
