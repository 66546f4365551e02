"""Weighted fraud heuristic for referral clicks.

The score is advisory. Tracking never stops on it; high risk is logged and
stored on the click for review.
"""

import ipaddress
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from creditcore.logging_config import get_logger
from creditcore.referral.models import FraudScore, Referral, ReferralClick, RiskLevel
from creditcore.settings import settings

logger = get_logger(__name__)

# Automation signatures matched against lowercased user agents
SUSPICIOUS_USER_AGENT_PATTERNS = (
    "bot",
    "crawler",
    "spider",
    "scraper",
    "headless",
    "phantom",
    "selenium",
    "webdriver",
    "automation",
)

IP_WEIGHT = 0.4
USER_AGENT_WEIGHT = 0.3
GEO_WEIGHT = 0.2
TEMPORAL_WEIGHT = 0.1

CLICK_BURST_WINDOW = timedelta(minutes=5)
CLICK_BURST_LIMIT = 10


def risk_level_for(score: float) -> RiskLevel:
    if score < 0.3:
        return RiskLevel.LOW
    if score < 0.7:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


class FraudDetector:
    """Scores a click on four independent signals.

    - IP reputation below 0.3 adds 0.4
    - user agent adds 0.3 scaled by the share of signatures matched
    - geographic anomaly above 0.6 adds 0.2
    - more than 10 clicks for the referrer in 5 minutes adds 0.1
    """

    def __init__(
        self,
        blocked_networks: list[str] | None = None,
        high_risk_locations: list[str] | None = None,
    ):
        networks = settings.fraud_blocked_networks if blocked_networks is None else blocked_networks
        locations = settings.fraud_high_risk_locations if high_risk_locations is None else high_risk_locations
        self.blocked_networks = [ipaddress.ip_network(net, strict=False) for net in networks]
        self.high_risk_locations = {loc.strip().lower() for loc in locations}

    def check_ip_reputation(self, ip_address: str) -> float:
        """Reputation in [0, 1]; lower is worse."""
        try:
            address = ipaddress.ip_address(ip_address)
        except ValueError:
            return 0.2  # Unparseable address
        if any(address in network for network in self.blocked_networks):
            return 0.0
        return 0.5

    def check_user_agent(self, user_agent: str) -> tuple[float, list[str]]:
        """Share of automation signatures found in the user agent."""
        lowered = user_agent.lower()
        matches = [pattern for pattern in SUSPICIOUS_USER_AGENT_PATTERNS if pattern in lowered]
        return len(matches) / len(SUSPICIOUS_USER_AGENT_PATTERNS), matches

    def check_geographic_anomaly(self, location: str) -> float:
        if location.strip().lower() in self.high_risk_locations:
            return 0.8
        return 0.1

    def check_temporal_pattern(self, session: Session, referring_client_id: int, timestamp: datetime) -> float:
        """Burst detection over the referrer's recent clicks."""
        recent_clicks = session.query(func.count(ReferralClick.id)).select_from(ReferralClick).join(
            Referral, ReferralClick.referral_id == Referral.id
        ).filter(
            Referral.referring_client_id == referring_client_id,
            ReferralClick.clicked_at >= timestamp - CLICK_BURST_WINDOW,
        ).scalar() or 0
        return 0.8 if recent_clicks > CLICK_BURST_LIMIT else 0.1

    def score(
        self,
        session: Session,
        referring_client_id: int,
        ip_address: str,
        user_agent: str | None,
        location: str | None,
        timestamp: datetime,
    ) -> FraudScore:
        indicators: list[str] = []
        score = 0.0

        if self.check_ip_reputation(ip_address) < 0.3:
            indicators.append("suspicious_ip")
            score += IP_WEIGHT

        if user_agent:
            fraction, matches = self.check_user_agent(user_agent)
            if matches:
                indicators.append("suspicious_user_agent")
                score += USER_AGENT_WEIGHT * fraction

        if location and self.check_geographic_anomaly(location) > 0.6:
            indicators.append("geographic_anomaly")
            score += GEO_WEIGHT

        if self.check_temporal_pattern(session, referring_client_id, timestamp) > 0.5:
            indicators.append("temporal_anomaly")
            score += TEMPORAL_WEIGHT

        score = min(max(score, 0.0), 1.0)
        return FraudScore(score=score, risk_level=risk_level_for(score), indicators=indicators)
