"""Subscription plans and merchandise catalogue."""

from decimal import Decimal
from typing import Iterable, Optional

from state_machine.models import (
    CartLine,
    MerchCategory,
    MerchItem,
    PlanInterval,
    SubscriptionPlan,
)

SUBSCRIPTION_PLANS: list[SubscriptionPlan] = [
    SubscriptionPlan(
        id="basic",
        name="Basic Hero",
        description="Essential CryptoQuest features",
        price=Decimal("9.99"),
        interval=PlanInterval.MONTHLY,
        features=[
            "Basic character progression",
            "Standard quests access",
            "Community guild participation",
            "Mobile app access",
        ],
    ),
    SubscriptionPlan(
        id="premium",
        name="Legendary Warrior",
        description="Advanced gaming with exclusive content",
        price=Decimal("19.99"),
        interval=PlanInterval.MONTHLY,
        features=[
            "Enhanced character abilities",
            "Exclusive quest lines",
            "Premium guild features",
            "Cross-platform sync",
            "NFT trading privileges",
            "Priority customer support",
        ],
    ),
    SubscriptionPlan(
        id="ultimate",
        name="Mythic Champion",
        description="Ultimate CryptoQuest experience",
        price=Decimal("39.99"),
        interval=PlanInterval.MONTHLY,
        features=[
            "All premium features",
            "Early access to new content",
            "Exclusive mythic items",
            "Private server access",
            "Direct developer communication",
            "Custom avatar creation",
            "Advanced analytics dashboard",
        ],
    ),
    SubscriptionPlan(
        id="annual_premium",
        name="Legendary Warrior (Annual)",
        description="Annual subscription with 2 months free",
        price=Decimal("199.99"),
        interval=PlanInterval.YEARLY,
        features=[
            "All Legendary Warrior features",
            "2 months free (20% savings)",
            "Annual exclusive NFT drop",
            "Priority event access",
        ],
    ),
]

MERCH_CATALOG: list[MerchItem] = [
    MerchItem(
        id="tshirt_hero",
        name="CryptoQuest Hero T-Shirt",
        description="Premium cotton t-shirt with exclusive Hero design",
        price=Decimal("24.99"),
        category=MerchCategory.APPAREL,
        image_url="/merch/tshirt-hero.jpg",
        variants={
            "size": ["XS", "S", "M", "L", "XL", "XXL"],
            "color": ["Black", "Navy", "Forest Green"],
        },
    ),
    MerchItem(
        id="hoodie_guild",
        name="Guild Master Hoodie",
        description="Premium hoodie with embroidered guild crest",
        price=Decimal("49.99"),
        category=MerchCategory.APPAREL,
        image_url="/merch/hoodie-guild.jpg",
        variants={
            "size": ["S", "M", "L", "XL", "XXL"],
            "color": ["Black", "Charcoal", "Burgundy"],
        },
    ),
    MerchItem(
        id="mug_shards",
        name="Shards of Genesis Mug",
        description="Ceramic mug with color-changing Shards design",
        price=Decimal("14.99"),
        category=MerchCategory.ACCESSORIES,
        image_url="/merch/mug-shards.jpg",
    ),
    MerchItem(
        id="poster_map",
        name="CryptoQuest World Map Poster",
        description="High-quality print of the complete game world",
        price=Decimal("19.99"),
        category=MerchCategory.COLLECTIBLES,
        image_url="/merch/poster-map.jpg",
        variants={"size": ["18x24", "24x36"]},
    ),
    MerchItem(
        id="keychain_token",
        name="CQT Token Keychain",
        description="Metal keychain replica of the CQT token",
        price=Decimal("9.99"),
        category=MerchCategory.ACCESSORIES,
        image_url="/merch/keychain-token.jpg",
    ),
    MerchItem(
        id="artbook_digital",
        name="Digital Art Book Collection",
        description="Complete digital art collection with concept art",
        price=Decimal("29.99"),
        category=MerchCategory.DIGITAL,
        image_url="/merch/artbook-digital.jpg",
    ),
]


def get_plan(plan_id: str) -> Optional[SubscriptionPlan]:
    """Look up a subscription plan by id."""
    return next((plan for plan in SUBSCRIPTION_PLANS if plan.id == plan_id), None)


def get_merch_item(item_id: str) -> Optional[MerchItem]:
    """Look up a merchandise item by id."""
    return next((item for item in MERCH_CATALOG if item.id == item_id), None)


def calculate_merch_total(lines: Iterable[CartLine]) -> Decimal:
    """Order total in USD. Unknown item ids contribute nothing."""
    total = Decimal("0")
    for line in lines:
        item = get_merch_item(line.item_id)
        if item:
            total += item.price * line.quantity
    return total
