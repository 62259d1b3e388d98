from app.models.crawl_run import CrawlRun
from app.models.restaurant import Base, ExtRestaurant, restaurant_id_for
from app.models.restaurant_check import RestaurantCheck

__all__ = ["Base", "CrawlRun", "ExtRestaurant", "RestaurantCheck", "restaurant_id_for"]
