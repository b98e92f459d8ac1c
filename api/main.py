from fastapi import FastAPI, Depends, HTTPException, status, Query, Body
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
import sqlalchemy.exc

from config.settings import get_settings
from revaluation.dates import parse_as_of_date
from revaluation.database.operations import (
    get_db,
    get_item_valuations,
    get_latest_portfolio,
    get_portfolio_history,
)
from revaluation.market.movers import (
    SORT_IMPACT,
    clamp_window,
    movers_to_csv,
    query_movers,
)
from revaluation.pricing.money import to_cents
from revaluation.pricing.normalizer import normalize_variant_type
from revaluation.pricing.resolver import (
    LivePriceResolver,
    is_supported_game,
    normalize_game,
)
from revaluation.valuation.engine import revalue_user_collection
from revaluation.valuation.jobs import enqueue_revalue

from .models import (
    ErrorResponse,
    ItemValuationOut,
    ItemValuationResponse,
    LivePriceResponse,
    MoverOut,
    MoversResponse,
    PortfolioHistoryResponse,
    PortfolioSnapshot,
    RevalueRequest,
    RevalueResponse,
)

settings = get_settings()

app = FastAPI(
    title="Collectibles Revaluation API",
    description="Read and trigger surface for portfolio valuations and market movers",
    version=settings.PROJECT_VERSION,
)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_resolver(db: Session = Depends(get_db)) -> LivePriceResolver:
    """Price resolver bound to the request's session (overridable in tests)."""
    return LivePriceResolver(db)


@app.get("/", tags=["General"])
async def root():
    """Root endpoint providing API information."""
    return {
        "name": settings.PROJECT_NAME,
        "version": settings.PROJECT_VERSION,
        "description": "API for collection valuations and market price movement",
        "endpoints": {
            "GET /": "This information",
            "GET /portfolio/{user_id}/history": "Daily portfolio values for a user",
            "GET /portfolio/{user_id}/latest": "Most recent portfolio snapshot",
            "GET /portfolio/{user_id}/valuations": "Per-item valuations for one day",
            "POST /portfolio/{user_id}/revalue": "Revalue a user's collection",
            "GET /prices/{game}/{card_id}": "Live price for a card",
            "GET /movers": "Market movers (JSON or CSV)",
        },
    }


@app.get(
    "/portfolio/{user_id}/history",
    response_model=PortfolioHistoryResponse,
    tags=["Portfolio"],
)
async def portfolio_history(
    user_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = Query(365, ge=1, le=3650),
    db: Session = Depends(get_db),
):
    """Get a user's daily portfolio values, oldest first."""
    try:
        rows = get_portfolio_history(db, user_id, start_date, end_date, limit=limit)
        return PortfolioHistoryResponse(
            user_id=user_id,
            count=len(rows),
            history=[PortfolioSnapshot.model_validate(row) for row in rows],
        )
    except sqlalchemy.exc.SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {str(e)}",
        ) from e


@app.get(
    "/portfolio/{user_id}/latest",
    response_model=PortfolioSnapshot,
    responses={404: {"model": ErrorResponse}},
    tags=["Portfolio"],
)
async def latest_portfolio(user_id: str, db: Session = Depends(get_db)):
    """Get the most recent portfolio snapshot for a user."""
    try:
        row = get_latest_portfolio(db, user_id)
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"No portfolio valuations found for user {user_id}",
            )
        return PortfolioSnapshot.model_validate(row)
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error retrieving portfolio: {str(e)}",
        ) from e


@app.get(
    "/portfolio/{user_id}/valuations",
    response_model=ItemValuationResponse,
    tags=["Portfolio"],
)
async def item_valuations(
    user_id: str,
    as_of_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    """Get every item valuation a user has for one day (default today, UTC)."""
    as_of = parse_as_of_date(as_of_date)
    try:
        rows = get_item_valuations(db, user_id, as_of)
        return ItemValuationResponse(
            user_id=user_id,
            as_of_date=as_of,
            count=len(rows),
            valuations=[ItemValuationOut.model_validate(row) for row in rows],
        )
    except sqlalchemy.exc.SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {str(e)}",
        ) from e


@app.post(
    "/portfolio/{user_id}/revalue",
    response_model=RevalueResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    tags=["Portfolio"],
)
async def revalue_portfolio(
    user_id: str,
    request: Optional[RevalueRequest] = Body(default=None),
    db: Session = Depends(get_db),
    resolver: LivePriceResolver = Depends(get_resolver),
):
    """Revalue a user's collection inline, or queue a background job."""
    request = request or RevalueRequest()

    try:
        if request.queue:
            job = enqueue_revalue(db, user_id, request.as_of_date)
            if job is None:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"User {user_id} already has a revaluation in progress",
                )
            return RevalueResponse(
                ok=True,
                user_id=user_id,
                as_of_date=job.as_of_date,
                message="Revaluation queued.",
                job_id=job.id,
            )

        result = revalue_user_collection(db, user_id, request.as_of_date, resolver=resolver)
        response = RevalueResponse(**result.to_dict())
        if not result.ok:
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=response.model_dump(mode="json"),
            )
        return response

    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid request: {str(e)}",
        ) from e
    except sqlalchemy.exc.SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {str(e)}",
        ) from e


@app.get(
    "/prices/{game}/{card_id}",
    response_model=LivePriceResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    tags=["Prices"],
)
async def live_price(
    game: str,
    card_id: str,
    variant: Optional[str] = None,
    resolver: LivePriceResolver = Depends(get_resolver),
):
    """Resolve the current unit price of a card."""
    game_id = normalize_game(game)
    if not is_supported_game(game_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"No supported price source for game '{game}'",
        )

    try:
        price = resolver.resolve(game_id, card_id, variant)
    except sqlalchemy.exc.SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {str(e)}",
        ) from e

    if price is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No price found for {game_id.value} card {card_id}",
        )

    return LivePriceResponse(
        game=game_id.value,
        card_id=card_id,
        variant_type=normalize_variant_type(variant),
        amount=float(price.amount),
        amount_cents=to_cents(price.amount),
        currency=price.currency,
        source=price.source,
        confidence=price.confidence,
        field=price.field,
        updated_at=price.updated_at,
    )


@app.get(
    "/movers",
    response_model=MoversResponse,
    responses={400: {"model": ErrorResponse}},
    tags=["Market"],
)
async def movers(
    days: int = Query(7, ge=1),
    limit: int = Query(100, ge=1),
    sort: str = Query(SORT_IMPACT),
    user_id: Optional[str] = None,
    game: Optional[str] = None,
    as_of_date: Optional[date] = None,
    format: str = Query("json", pattern="^(json|csv)$"),
    db: Session = Depends(get_db),
):
    """Market items ranked by price change, catalog-wide or for one user."""
    try:
        days, limit = clamp_window(days, limit)
        as_of = parse_as_of_date(as_of_date)
        rows = query_movers(
            db,
            days=days,
            limit=limit,
            sort_by=sort,
            as_of_date=as_of,
            user_id=user_id,
            game=game,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    except sqlalchemy.exc.SQLAlchemyError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Database error: {str(e)}",
        ) from e

    if format == "csv":
        return Response(
            content=movers_to_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="movers-{as_of.isoformat()}.csv"'},
        )

    return MoversResponse(
        days=days,
        limit=limit,
        sort=sort,
        as_of_date=as_of,
        user_id=user_id,
        count=len(rows),
        movers=[MoverOut.model_validate(m) for m in rows],
    )


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(_request, exc):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(_request, exc):
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Unexpected error: {str(exc)}"},
    )


# Run with: uvicorn api.main:app --reload
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
