# credit_engine/services/catalog.py
"""Credit packages and subscription plans sold through mobile money (TZS)."""

from dataclasses import dataclass
from typing import Dict, List

from credit_engine.services.errors import UnknownPackage

CURRENCY = "TZS"

CREDITS_KIND = "credits"
SUBSCRIPTION_KIND = "subscription"
# unlocks the account; grants no credits
ONE_TIME_KIND = "one_time"


@dataclass(frozen=True)
class Offer:
    id: str
    name: str
    credits: int
    price: int
    kind: str = CREDITS_KIND
    popular: bool = False

    @property
    def label(self) -> str:
        return f"{self.name} - {CURRENCY} {self.price:,}"


CREDIT_PACKAGES: List[Offer] = [
    Offer(id="credits_100", name="100 Credits", credits=100, price=5000),
    Offer(id="credits_250", name="250 Credits", credits=250, price=10000),
    Offer(id="credits_500", name="500 Credits", credits=500, price=18000, popular=True),
    Offer(id="credits_1000", name="1,000 Credits", credits=1000, price=30000),
]

SUBSCRIPTION_PLANS: List[Offer] = [
    Offer(id="daily", name="Daily Pass", credits=999, price=500, kind=SUBSCRIPTION_KIND),
    Offer(id="monthly", name="Monthly Pass", credits=999, price=5000, kind=SUBSCRIPTION_KIND),
]

ONE_TIME_FEE = Offer(id="one_time", name="One-time signup fee", credits=0, price=3000, kind=ONE_TIME_KIND)

_OFFERS: Dict[str, Offer] = {o.id: o for o in CREDIT_PACKAGES + SUBSCRIPTION_PLANS + [ONE_TIME_FEE]}


def resolve_offer(package_or_plan: str) -> Offer:
    key = str(package_or_plan or "").strip().lower()
    offer = _OFFERS.get(key)
    if offer is None:
        # accept the bare credit count the old purchase form posted ("250")
        offer = _OFFERS.get(f"credits_{key}")
    if offer is None:
        raise UnknownPackage(str(package_or_plan))
    return offer
