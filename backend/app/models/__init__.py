from .price_recommendation import PriceRecommendation

__all__ = [
    "PriceRecommendation",
]
