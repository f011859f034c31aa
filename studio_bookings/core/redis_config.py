from studio_bookings.core.config import get_settings


def get_redis_url():
    return get_settings().redis_url
