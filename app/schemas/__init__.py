from app.schemas.crawl import (
    CrawlRunResponse,
    ExtRestaurantResponse,
    RestaurantCheckResponse,
    RunCreateRequest,
)

__all__ = [
    "CrawlRunResponse",
    "ExtRestaurantResponse",
    "RestaurantCheckResponse",
    "RunCreateRequest",
]
