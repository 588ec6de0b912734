"""
Category Suggestion

Picks a category for an expense from keywords in its title, for entries
the user saved without choosing one. Categories are checked in the
order below and the first keyword found anywhere in the lowercased
title wins, so "Uber Eats" is Food rather than Transport.
"""

from typing import Optional

from budgetflow.models.budget import ExpenseCategory


CATEGORY_KEYWORDS: dict[ExpenseCategory, tuple[str, ...]] = {
    ExpenseCategory.FOOD: (
        "grocery", "restaurant", "food", "lunch", "dinner", "breakfast", "cafe",
        "coffee", "starbucks", "mcdonalds", "pizza", "burger", "subway", "kfc",
        "dominos", "meal", "eat", "kitchen", "bakery", "deli",
    ),
    ExpenseCategory.TRANSPORT: (
        "uber", "lyft", "fuel", "parking", "taxi", "metro", "bus", "train",
        "flight", "airline", "car", "vehicle", "transport", "toll", "petrol",
        "diesel", "gas",
    ),
    ExpenseCategory.ENTERTAINMENT: (
        "netflix", "spotify", "hulu", "disney", "movie", "cinema", "game",
        "concert", "music", "theater", "entertainment", "youtube", "prime",
        "stream", "hotel", "airbnb", "travel", "vacation", "trip", "resort",
    ),
    ExpenseCategory.HOUSING: (
        "rent", "mortgage",
    ),
    ExpenseCategory.UTILITIES: (
        "electricity", "water", "internet", "wifi", "utility", "cable",
    ),
    ExpenseCategory.BILLS: (
        "phone", "mobile", "insurance", "loan", "subscription", "payment", "bill",
    ),
    ExpenseCategory.SHOPPING: (
        "amazon", "shopping", "mall", "clothing", "clothes", "shoes", "walmart",
        "target", "costco", "shop", "store", "retail", "fashion", "apparel",
        "ebay", "nike", "adidas",
    ),
    ExpenseCategory.HEALTH: (
        "doctor", "pharmacy", "medicine", "hospital", "clinic", "medical",
        "health", "dental", "dentist", "prescription", "drug", "cvs",
        "walgreens", "gym", "fitness", "yoga", "workout", "sports", "exercise",
    ),
    ExpenseCategory.SAVINGS: (
        "savings", "deposit", "investment",
    ),
}


def suggest_category(title: Optional[str]) -> ExpenseCategory:
    """Best-guess category for `title`; Other when nothing matches."""
    if not title or not isinstance(title, str):
        return ExpenseCategory.OTHER

    name = title.strip().lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in name for keyword in keywords):
            return category
    return ExpenseCategory.OTHER
