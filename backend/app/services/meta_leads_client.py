"""Meta Lead Ads API client.

WHAT:
    Wrapper for the Facebook Business SDK that reads lead-form submissions
    (`LeadgenForm.get_leads`) and returns them in the `MetaLeadFormData`
    payload shape consumed by the lead import service.

WHY:
    - One place for Meta credentials, rate limiting and error translation
    - Sync and webhook imports share a single payload shape

WHERE USED:
    - app/services/lead_import_service.py (sync_meta_form_leads)
    - app/cli.py

RATE LIMITS:
    - 200 API calls per hour, enforced with @rate_limit(calls_per_hour=200)

REFERENCES:
    - https://developers.facebook.com/docs/marketing-api/guides/lead-ads/retrieving
"""

import logging
from collections import deque
from functools import wraps
from time import sleep, time
from typing import Any, Dict, List, Optional

from facebook_business.adobjects.lead import Lead
from facebook_business.adobjects.leadgenform import LeadgenForm
from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookRequestError

from app.deps import get_settings

logger = logging.getLogger(__name__)

LEAD_FIELDS = [
    Lead.Field.id,
    Lead.Field.created_time,
    Lead.Field.form_id,
    Lead.Field.campaign_id,
    Lead.Field.campaign_name,
    Lead.Field.adset_id,
    Lead.Field.adset_name,
    Lead.Field.ad_id,
    Lead.Field.ad_name,
    Lead.Field.platform,
    Lead.Field.field_data,
]

INSTAGRAM_PLATFORMS = {"ig", "instagram"}


def rate_limit(calls_per_hour: int):
    """Sliding-window rate limiter.

    Keeps the timestamps of the last `calls_per_hour` calls and sleeps until
    the oldest one leaves the one-hour window when the limit is reached.
    """
    call_times = deque(maxlen=calls_per_hour)

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            now = time()

            while call_times and call_times[0] < now - 3600:
                call_times.popleft()

            if len(call_times) >= calls_per_hour:
                sleep_time = 3600 - (now - call_times[0]) + 1
                logger.warning(
                    f"[META_LEADS] Rate limit reached ({calls_per_hour} calls/hour). "
                    f"Sleeping for {sleep_time:.1f}s"
                )
                sleep(sleep_time)

            call_times.append(now)
            return func(*args, **kwargs)
        return wrapper
    return decorator


class MetaLeadsClientError(Exception):
    """Base exception for Meta Lead Ads client errors."""
    pass


class MetaLeadsAuthenticationError(MetaLeadsClientError):
    """Raised when authentication fails (401)."""
    pass


class MetaLeadsPermissionError(MetaLeadsClientError):
    """Raised when the token lacks leads_retrieval / page access (403)."""
    pass


class MetaLeadsValidationError(MetaLeadsClientError):
    """Raised when the request is malformed, e.g. an unknown form id (400)."""
    pass


def normalize_platform(platform: Optional[str]) -> str:
    """Meta reports "ig" for Instagram lead forms; everything else is facebook."""
    if platform and platform.strip().lower() in INSTAGRAM_PLATFORMS:
        return "instagram"
    return "facebook"


def to_lead_form_payload(lead: Dict[str, Any]) -> Dict[str, Any]:
    """Graph API lead -> MetaLeadFormData payload dict."""
    return {
        "leadgen_id": lead.get("id"),
        "form_id": lead.get("form_id"),
        "campaign_id": lead.get("campaign_id"),
        "campaign_name": lead.get("campaign_name"),
        "adset_id": lead.get("adset_id"),
        "adset_name": lead.get("adset_name"),
        "ad_id": lead.get("ad_id"),
        "ad_name": lead.get("ad_name"),
        "created_time": lead.get("created_time"),
        "field_data": [
            {"name": f.get("name"), "values": list(f.get("values") or [])}
            for f in (lead.get("field_data") or [])
            if f.get("name")
        ],
        "platform": normalize_platform(lead.get("platform")),
    }


class MetaLeadsClient:
    """Client for reading Meta lead-form submissions.

    Usage:
        client = MetaLeadsClient(access_token="YOUR_TOKEN")
        payloads = client.get_form_leads("1234567890", since=1717200000)
    """

    def __init__(self, access_token: str, app_id: Optional[str] = None, app_secret: Optional[str] = None):
        self.access_token = access_token

        FacebookAdsApi.init(
            app_id=app_id,
            app_secret=app_secret,
            access_token=access_token,
        )

        logger.info("[META_LEADS] Initialized with access token")

    @classmethod
    def from_settings(cls) -> "MetaLeadsClient":
        """Build a client from META_* settings.

        Raises:
            MetaLeadsAuthenticationError: META_ACCESS_TOKEN not configured
        """
        settings = get_settings()
        if not settings.META_ACCESS_TOKEN:
            raise MetaLeadsAuthenticationError("META_ACCESS_TOKEN must be set")
        return cls(
            access_token=settings.META_ACCESS_TOKEN,
            app_id=settings.META_APP_ID,
            app_secret=settings.META_APP_SECRET,
        )

    @rate_limit(calls_per_hour=200)
    def get_form_leads(self, form_id: str, since: Optional[int] = None) -> List[Dict[str, Any]]:
        """Fetch all submissions of one lead form.

        Args:
            form_id: Meta lead form id
            since: Optional unix timestamp; only leads created after it

        Returns:
            List of MetaLeadFormData-shaped dicts, in the order Meta returns them

        Raises:
            MetaLeadsAuthenticationError: Invalid or expired token
            MetaLeadsPermissionError: Missing leads_retrieval permission
            MetaLeadsValidationError: Unknown form id or bad filter
            MetaLeadsClientError: Other API errors
        """
        params: Dict[str, Any] = {}
        if since is not None:
            params["filtering"] = [
                {"field": "time_created", "operator": "GREATER_THAN", "value": int(since)}
            ]

        try:
            logger.info(f"[META_LEADS] Fetching leads for form: {form_id}")

            leads = LeadgenForm(form_id).get_leads(fields=LEAD_FIELDS, params=params)

            # SDK cursor pages through results automatically
            result = [to_lead_form_payload(dict(lead)) for lead in leads]

            logger.info(f"[META_LEADS] Fetched {len(result)} leads for form {form_id}")
            return result

        except FacebookRequestError as e:
            return self._handle_api_error(e, f"fetching leads for form {form_id}")

    def _handle_api_error(self, error: FacebookRequestError, context: str) -> None:
        """Translate FacebookRequestError by HTTP status and raise.

        Raises:
            MetaLeadsAuthenticationError: 401
            MetaLeadsPermissionError: 403
            MetaLeadsValidationError: 400
            MetaLeadsClientError: anything else (429, 5xx)
        """
        error_code = error.api_error_code()
        error_message = error.api_error_message()
        http_status = error.http_status()

        logger.error(
            f"[META_LEADS] API error while {context}: "
            f"HTTP {http_status}, Code {error_code}, Message: {error_message}"
        )

        if http_status == 401:
            raise MetaLeadsAuthenticationError(
                f"Authentication failed while {context}. Token may be expired or invalid."
            )
        elif http_status == 403:
            raise MetaLeadsPermissionError(
                f"Permission denied while {context}. Check leads_retrieval permission."
            )
        elif http_status == 400:
            raise MetaLeadsValidationError(f"Invalid request while {context}: {error_message}")
        else:
            raise MetaLeadsClientError(f"API error while {context}: HTTP {http_status}, {error_message}")
