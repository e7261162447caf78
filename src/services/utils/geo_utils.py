import math
from datetime import datetime, timedelta

from src.common.exceptions import InvalidCoordinates

EARTH_RADIUS_KM = 6371.0


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def validate_coordinates(lat: object, lng: object) -> tuple[float, float]:
    """
    Проверяет пару координат и возвращает её как (float, float).

    Отклоняет: отсутствующие и нечисловые значения, NaN/inf, выход за диапазон,
    точку (0, 0). Одиночный ноль допустим (экватор, гринвичский меридиан).
    """
    if lat is None or lng is None:
        raise InvalidCoordinates("Latitude and longitude are required")
    # bool это подкласс int, но координатой не является
    if isinstance(lat, bool) or isinstance(lng, bool):
        raise InvalidCoordinates("Latitude and longitude must be numbers")
    try:
        lat_f, lng_f = float(lat), float(lng)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InvalidCoordinates("Latitude and longitude must be numbers") from None

    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise InvalidCoordinates("Latitude and longitude must be finite numbers")
    if not -90 <= lat_f <= 90:
        raise InvalidCoordinates(f"Latitude out of range: {lat_f}")
    if not -180 <= lng_f <= 180:
        raise InvalidCoordinates(f"Longitude out of range: {lng_f}")
    if lat_f == 0 and lng_f == 0:
        raise InvalidCoordinates("Coordinates (0, 0) are not a valid location")

    return lat_f, lng_f


def estimate_travel_minutes(distance_km: float, speed_kmh: float | None, default_speed_kmh: float, min_speed_kmh: float) -> float:
    """
    Время в пути в минутах.
    Скорость курьера используется, только если она не меньше min_speed_kmh
    (стоящий на светофоре курьер не должен давать ETA в бесконечность).
    """
    speed = speed_kmh if speed_kmh and speed_kmh >= min_speed_kmh else default_speed_kmh
    return distance_km / speed * 60


def estimate_arrival(now: datetime, minutes: float) -> datetime:
    return now + timedelta(minutes=minutes)


def format_eta(estimated: datetime, now: datetime) -> str:
    """"N minutes" (округление вверх) или "Arriving now"."""
    remaining = (estimated - now).total_seconds()
    if remaining <= 0:
        return "Arriving now"
    return f"{math.ceil(remaining / 60)} minutes"
