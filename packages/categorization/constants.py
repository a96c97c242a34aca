"""Category constants for transaction classification.

Defines the default spending categories seeded into an empty store and the
name of the fallback bucket used when the classifier returns nothing usable.
"""

from enum import Enum
from typing import List

from packages.ingestion_engine.ports import CategoryInfo


class Category(str, Enum):
    """Default spending categories."""

    GROCERIES = "Groceries"
    TRANSPORT = "Transport"
    EATING_OUT = "Eating Out"
    ENTERTAINMENT = "Entertainment"
    SHOPPING = "Shopping"
    BILLS = "Bills & Utilities"
    HEALTH = "Health & Fitness"
    TRAVEL = "Travel"
    SUBSCRIPTIONS = "Subscriptions"
    INCOME = "Income"
    TRANSFERS = "Transfers"
    OTHER = "Other"


DEFAULT_FALLBACK_CATEGORY = Category.OTHER.value

# Descriptions and examples sent to the classifier with each category.
DEFAULT_CATEGORY_DETAILS: dict[str, tuple[str, list[str]]] = {
    Category.GROCERIES.value: (
        "Food and household items from supermarkets and grocery stores",
        ["Tesco", "Sainsbury's", "Waitrose", "Aldi", "Lidl", "Ocado"],
    ),
    Category.TRANSPORT.value: (
        "Public transport, taxis, and ride-sharing services",
        ["TfL", "Uber", "Bolt", "Train tickets", "Bus fares"],
    ),
    Category.EATING_OUT.value: (
        "Restaurants, cafes, takeaways, and food delivery",
        ["Deliveroo", "Just Eat", "Nandos", "Pret", "Costa"],
    ),
    Category.ENTERTAINMENT.value: (
        "Leisure activities, streaming services, and events",
        ["Netflix", "Spotify", "Cinema", "Concerts", "Theatre"],
    ),
    Category.SHOPPING.value: (
        "General retail purchases (non-grocery)",
        ["Amazon", "ASOS", "John Lewis", "Argos"],
    ),
    Category.BILLS.value: (
        "Regular household bills and utility payments",
        ["Electricity", "Gas", "Water", "Internet", "Phone"],
    ),
    Category.HEALTH.value: (
        "Medical expenses, gym memberships, and wellness",
        ["Gym", "Pharmacy", "Doctor", "Dentist", "Optician"],
    ),
    Category.TRAVEL.value: (
        "Holidays, flights, hotels, and travel expenses",
        ["Hotels", "Airbnb", "Flights", "Holiday bookings"],
    ),
    Category.SUBSCRIPTIONS.value: (
        "Recurring subscription payments",
        ["Software subscriptions", "Membership fees", "Magazines"],
    ),
    Category.INCOME.value: (
        "Salary, refunds, and other income",
        ["Salary", "Refunds", "Interest", "Dividends"],
    ),
    Category.TRANSFERS.value: (
        "Money transfers between accounts",
        ["Bank transfer", "Savings transfer", "Investment transfer"],
    ),
    Category.OTHER.value: (
        "Miscellaneous transactions that don't fit other categories",
        ["Cash withdrawal", "Unknown transactions"],
    ),
}


def default_categories() -> List[CategoryInfo]:
    """Seed list with stable ids cat-001 .. cat-012."""
    return [
        CategoryInfo(id=f"cat-{i:03d}", name=name, description=description, examples=list(examples))
        for i, (name, (description, examples)) in enumerate(DEFAULT_CATEGORY_DETAILS.items(), start=1)
    ]
