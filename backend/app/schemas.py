"""Pydantic schemas for inbound payloads and report responses.

Attributes are snake_case in Python; on the wire every model uses camelCase
aliases (`model_dump(by_alias=True)`), except the third-party payloads
(Meta lead forms, Shopify orders), which keep the platform's own field names.
"""

from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# META LEAD ADS PAYLOADS
# =============================================================================

class MetaLeadField(BaseModel):
    """One answered question on a Meta lead form."""
    name: str
    values: List[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class MetaLeadFormData(BaseModel):
    """A single Meta Lead Ads submission (leadgen webhook / Graph API lead)."""
    leadgen_id: str = Field(description="Platform-assigned lead id", examples=["lead_123456789"])
    form_id: Optional[str] = None
    campaign_id: Optional[str] = None
    campaign_name: Optional[str] = None
    adset_id: Optional[str] = None
    adset_name: Optional[str] = None
    ad_id: Optional[str] = None
    ad_name: Optional[str] = None
    created_time: Optional[str] = None
    field_data: List[MetaLeadField] = Field(default_factory=list)
    platform: Literal["facebook", "instagram"] = "facebook"

    model_config = ConfigDict(extra="ignore")


# =============================================================================
# SHOPIFY ORDER PAYLOADS
# =============================================================================

class ShopifyCustomerData(BaseModel):
    id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class ShopifyNoteAttribute(BaseModel):
    name: str
    value: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class ShopifyOrderData(BaseModel):
    """The subset of a Shopify order consumed by lead conversion.

    `total_price` stays a string (Shopify sends decimals as strings); it is
    parsed as a Decimal when the order is processed.
    """
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    created_at: datetime
    financial_status: Optional[str] = None
    total_price: str
    currency: Optional[str] = None
    customer: Optional[ShopifyCustomerData] = None
    note_attributes: List[ShopifyNoteAttribute] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @field_validator("note_attributes", mode="before")
    @classmethod
    def _none_as_empty(cls, value):
        return value or []


# =============================================================================
# ATTRIBUTION REPORT
# =============================================================================

class DateRange(_CamelModel):
    from_: datetime = Field(alias="from")
    to: datetime


class AttributionSummary(_CamelModel):
    total_leads: int = 0
    converted_leads: int = 0
    conversion_rate: float = 0.0
    total_revenue: float = 0.0
    average_order_value: float = 0.0


class AttributionBySource(_CamelModel):
    source: str
    medium: str
    leads: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    revenue: float = 0.0
    average_order_value: float = 0.0


class AttributionByCampaign(_CamelModel):
    campaign: str
    source: str
    medium: str
    leads: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0
    revenue: float = 0.0
    average_order_value: float = 0.0


class AttributionTimeframe(_CamelModel):
    date: str = Field(description="UTC calendar date, YYYY-MM-DD")
    leads: int = 0
    conversions: int = 0
    revenue: float = 0.0


class FunnelStage(_CamelModel):
    stage: str
    leads: int
    conversion_rate: float
    drop_off_rate: float


class AttributionReport(_CamelModel):
    """Response for the attribution report.

    WHAT: Lead volume, conversions and revenue broken down by channel,
          campaign, day and funnel stage
    WHY: Owners need to see which channels turn leads into orders
    """
    success: bool = True
    date_range: DateRange
    summary: AttributionSummary
    by_source: List[AttributionBySource] = Field(default_factory=list)
    by_campaign: List[AttributionByCampaign] = Field(default_factory=list)
    by_timeframe: List[AttributionTimeframe] = Field(default_factory=list)
    funnel_analysis: List[FunnelStage] = Field(default_factory=list)


# =============================================================================
# LEAD JOURNEY
# =============================================================================

class TouchPoint(_CamelModel):
    timestamp: datetime
    source: str
    medium: str
    campaign: Optional[str] = None
    page: Optional[str] = None
    action: str


class LeadJourney(_CamelModel):
    """Chronological touchpoints for one lead.

    Serialise with `exclude_unset=True`: `time_to_conversion` and
    `total_revenue` are only set for converted leads and must be absent
    otherwise.
    """
    lead_id: str
    touchpoints: List[TouchPoint]
    conversion_path: List[str]
    time_to_conversion: Optional[int] = None
    total_revenue: Optional[float] = None


# =============================================================================
# CONVERSION TRACKING
# =============================================================================

class ChannelConversions(_CamelModel):
    source: str
    medium: str
    campaign: str
    conversions: int = 0
    revenue: float = 0.0


class ConvertedLeadOut(_CamelModel):
    lead_id: str
    customer_name: Optional[str] = None
    order_value: float = 0.0
    conversion_date: Optional[datetime] = None
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None


class ConversionTracking(_CamelModel):
    total_leads: int
    converted_leads: int
    conversion_rate: float
    total_revenue: float
    attribution: List[ChannelConversions]
    recent_conversions: List[ConvertedLeadOut]


class RealTimeConversions(_CamelModel):
    timeframe: str
    conversions: int
    total_revenue: float
    average_order_value: float
    recent_conversions: List[ConvertedLeadOut]


class LeadAttribution(_CamelModel):
    lead_id: str
    source: Optional[str] = None
    source_name: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    utm_term: Optional[str] = None
    created_at: datetime
