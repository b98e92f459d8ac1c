from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import date, datetime


# Request Models
class RevalueRequest(BaseModel):
    """Request model for triggering a revaluation."""

    as_of_date: Optional[date] = Field(
        default=None, description="UTC calendar date to value (default: today)"
    )
    queue: bool = Field(
        default=False,
        description="Queue a background job instead of revaluing inline",
    )


# Response Models
class PortfolioSnapshot(BaseModel):
    """API representation of one day of a user's portfolio."""

    user_id: str
    as_of_date: date
    total_quantity: int
    distinct_items: int
    total_cost_cents: int
    total_value_cents: int
    realized_pnl_cents: Optional[int] = None
    unrealized_pnl_cents: Optional[int] = None
    breakdown: Dict[str, Any] = {}
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PortfolioHistoryResponse(BaseModel):
    """Portfolio rows for a user, oldest first."""

    user_id: str
    count: int
    history: List[PortfolioSnapshot]


class ItemValuationOut(BaseModel):
    """API representation of one collection item's valuation."""

    item_id: str
    as_of_date: date
    game: Optional[str] = None
    value_cents: int
    currency: str
    source: str
    confidence: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class ItemValuationResponse(BaseModel):
    user_id: str
    as_of_date: date
    count: int
    valuations: List[ItemValuationOut]


class RevalueResponse(BaseModel):
    """Outcome of a revaluation trigger."""

    ok: bool
    user_id: str
    as_of_date: Optional[date] = None
    updated_items: int = 0
    skipped_no_price: int = 0
    skipped_unsupported_game: int = 0
    message: Optional[str] = None
    error: Optional[str] = None
    job_id: Optional[str] = None


class LivePriceResponse(BaseModel):
    """Resolved unit price for a card."""

    game: str
    card_id: str
    variant_type: str
    amount: float
    amount_cents: int
    currency: str
    source: str
    confidence: Optional[str] = None
    field: Optional[str] = None
    updated_at: Optional[datetime] = None


class MoverOut(BaseModel):
    """API representation of a market mover."""

    market_item_id: str
    game: str
    canonical_id: str
    display_name: Optional[str] = None
    set_name: Optional[str] = None
    quantity: Optional[int] = None
    from_cents: Optional[int] = None
    to_cents: Optional[int] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    delta_each_cents: Optional[int] = None
    delta_total_cents: Optional[int] = None
    change_pct: Optional[float] = None

    class Config:
        from_attributes = True


class MoversResponse(BaseModel):
    """Movers ranked by the requested sort."""

    days: int
    limit: int
    sort: str
    as_of_date: date
    user_id: Optional[str] = None
    count: int
    movers: List[MoverOut]


class ErrorResponse(BaseModel):
    """Error response model."""

    detail: str
