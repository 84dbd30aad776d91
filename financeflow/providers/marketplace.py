"""Business and domain marketplace adapters.

Neither marketplace has a live integration; both are ``mocked`` tier providers
serving a fixed listing set. The tier is checked once, at construction.
"""

import random
from typing import Dict, List, Optional

from financeflow.core.errors import ConfigurationMissing
from financeflow.core.logger import logger
from financeflow.models.datatypes import Opportunity, Provider
from financeflow.providers.base import OpportunityProvider

BUSINESS_SOURCE = "Flippa + MicroAcquire + IndieHackers (Mock)"
DOMAIN_SOURCE = "Namecheap API (Mock)"

_BUSINESS_LISTINGS = (
    Opportunity(
        id="flip_001", title="AI Content Generator SaaS", category="saas",
        description="Automated content generation tool with 500+ active users",
        price=45000, monthly_revenue=2500, monthly_profit=1800, age_months=18,
        marketplace="Flippa", url="https://flippa.com/12345", verified=True, listed_score=8.5,
    ),
    Opportunity(
        id="micro_002", title="Niche E-commerce Store", category="ecommerce",
        description="Dropshipping store in fitness niche with established supplier relationships",
        price=28000, monthly_revenue=4200, monthly_profit=1200, age_months=24,
        marketplace="MicroAcquire", url="https://microacquire.com/listings/xyz", verified=True,
        listed_score=7.8,
    ),
    Opportunity(
        id="indie_003", title="Developer Tools Chrome Extension", category="app",
        description="Productivity tool for developers with 10k+ users",
        price=15000, monthly_revenue=800, monthly_profit=650, age_months=12,
        marketplace="IndieHackers", url="https://indiehackers.com/product/abc", verified=False,
        listed_score=7.2,
    ),
    Opportunity(
        id="flip_004", title="Newsletter Platform SaaS", category="saas",
        description="Email newsletter platform with 200 paying customers",
        price=95000, monthly_revenue=5500, monthly_profit=3800, age_months=30,
        marketplace="Flippa", url="https://flippa.com/67890", verified=True, listed_score=9.1,
    ),
    Opportunity(
        id="micro_005", title="Social Media Analytics Tool", category="saas",
        description="Instagram analytics dashboard with API integration",
        price=32000, monthly_revenue=1800, monthly_profit=1200, age_months=15,
        marketplace="MicroAcquire", url="https://microacquire.com/listings/social", verified=True,
        listed_score=8.0,
    ),
)

_DOMAIN_LISTINGS = (
    Opportunity(
        id="financeflow.io", title="financeflow.io", category="domain", price=299,
        marketplace="Namecheap", status="available", estimated_value=500, listed_score=1.67,
    ),
    Opportunity(
        id="cryptotracker.com", title="cryptotracker.com", category="domain", price=1200,
        marketplace="GoDaddy Auctions", status="auction", estimated_value=2500, listed_score=2.08,
        description="Auction ends 2025-12-31",
    ),
    Opportunity(
        id="saasmetrics.ai", title="saasmetrics.ai", category="domain", price=450,
        marketplace="Dynadot", status="premium", estimated_value=800, listed_score=1.78,
    ),
    Opportunity(
        id="portfoliodash.app", title="portfoliodash.app", category="domain", price=89,
        marketplace="Namecheap", status="available", estimated_value=200, listed_score=2.25,
    ),
)


class _MockedMarketplace(OpportunityProvider):
    listings: tuple = ()
    source = ""

    def __init__(self, provider: Provider) -> None:
        super().__init__(provider)
        if not provider.is_mocked:
            raise ConfigurationMissing(
                f"No live integration exists for '{provider.name}'; configure tier: mocked",
                setting=f"providers.{provider.name}.tier",
            )

    async def fetch_bulk(self) -> List[Opportunity]:
        logger.info(f"{type(self).__name__}: serving {len(self.listings)} reference listings")
        return list(self.listings)


class BusinessListingsProvider(_MockedMarketplace):
    """SaaS / e-commerce business listings."""

    listings = _BUSINESS_LISTINGS
    source = BUSINESS_SOURCE


class DomainListingsProvider(_MockedMarketplace):
    """Domain names for sale or auction."""

    listings = _DOMAIN_LISTINGS
    source = DOMAIN_SOURCE

    def __init__(self, provider: Provider, rng: Optional[random.Random] = None) -> None:
        """Args:
            provider: Resolved ``domains`` provider (mocked tier).
            rng: Source of randomness for availability checks; seed it for repeatable runs.
        """
        super().__init__(provider)
        self.rng = rng or random.Random(0)

    def check_availability(self, domain: str, extension: str = ".com") -> Dict[str, object]:
        """
        Simulated availability check (~30% of names come back available).

        Args:
            domain (str): Second-level name, e.g. ``"financeflow"``.
            extension (str): TLD including the dot.

        Returns:
            Dict with ``available``, ``domain``, ``price`` and ``premium`` keys.
        """
        full_domain = f"{domain}{extension}"
        available = self.rng.random() > 0.7
        premium = available and self.rng.random() > 0.8
        return {
            "available": available,
            "domain": full_domain,
            "price": (299.0 if premium else 12.99) if available else None,
            "premium": premium,
        }
