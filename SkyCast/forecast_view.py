"""Text rendering of forecast payloads - pure functions for testability."""
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from forecast_data import ForecastResult

MISSING = "--"

# Open-Meteo WMO weather codes -> (label, emoji)
WEATHER_CODES: Sequence[Tuple[Sequence[int], Tuple[str, str]]] = (
    ((0,), ("Clear", "☀️")),
    ((1, 2, 3), ("Partly cloudy", "⛅")),
    ((45, 48), ("Foggy", "🌫️")),
    ((51, 53, 55), ("Drizzle", "🌦️")),
    ((56, 57), ("Freezing drizzle", "🌧️")),
    ((61, 63, 65), ("Rain", "🌧️")),
    ((66, 67), ("Freezing rain", "🌧️")),
    ((71, 73, 75), ("Snow", "🌨️")),
    ((77,), ("Snow grains", "🌨️")),
    ((80, 81, 82), ("Showers", "🌧️")),
    ((85, 86), ("Snow showers", "🌨️")),
    ((95,), ("Thunderstorm", "⛈️")),
    ((96, 99), ("Hail", "⛈️")),
)
UNKNOWN_WEATHER = ("—", "❓")


def describe_weather(code: Any) -> Tuple[str, str]:
    """
    Get label and emoji for a weather code.

    Args:
        code: WMO weather code (int, numeric string or None)

    Returns:
        Tuple of (label, emoji); unknown codes map to a placeholder
    """
    try:
        value = int(code)
    except (TypeError, ValueError):
        return UNKNOWN_WEATHER
    for codes, described in WEATHER_CODES:
        if value in codes:
            return described
    return UNKNOWN_WEATHER


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and not math.isnan(value)


def c_to_f(celsius: float) -> float:
    return celsius * 9 / 5 + 32


def format_temp(celsius: Optional[float], unit: str = "C") -> str:
    if not _is_number(celsius):
        return f"{MISSING}°"
    value = celsius if unit == "C" else c_to_f(celsius)
    return f"{_round_half_up(value)}°"


def format_range(celsius_min: Optional[float], celsius_max: Optional[float], unit: str = "C") -> str:
    return f"{format_temp(celsius_min, unit)} / {format_temp(celsius_max, unit)}"


def format_uv(value: Optional[float]) -> str:
    return f"{value:.1f}" if _is_number(value) else MISSING


def format_time(iso: Optional[str]) -> str:
    """'2024-05-01T06:03' -> '06:03'."""
    try:
        return datetime.fromisoformat(iso).strftime("%H:%M")
    except (TypeError, ValueError):
        return MISSING


def format_date(iso: Optional[str]) -> str:
    """'2024-05-01' -> 'Wed, May 1'."""
    try:
        day = datetime.fromisoformat(iso)
    except (TypeError, ValueError):
        return MISSING
    return f"{day.strftime('%a, %b')} {day.day}"


def iso_hour(moment: datetime) -> str:
    """Truncate a moment to the hour in Open-Meteo's 'YYYY-MM-DDTHH:00' form."""
    return moment.replace(minute=0, second=0, microsecond=0).strftime("%Y-%m-%dT%H:00")


def nearest_index(times: Sequence[str], target_iso: str) -> int:
    """
    Index of target_iso in times, or of the closest entry if it is absent.

    Unparseable entries are never chosen; an empty series yields 0.
    """
    if target_iso in times:
        return list(times).index(target_iso)
    try:
        target = datetime.fromisoformat(target_iso)
    except ValueError:
        return 0
    best, best_delta = 0, None
    for i, entry in enumerate(times):
        try:
            delta = abs((datetime.fromisoformat(entry) - target).total_seconds())
        except (TypeError, ValueError):
            continue
        if best_delta is None or delta < best_delta:
            best, best_delta = i, delta
    return best


def _series_value(series: Dict[str, Any], name: str, index: int) -> Any:
    values = series.get(name)
    if not isinstance(values, list) or index >= len(values):
        return None
    return values[index]


def _anchor(payload: Dict[str, Any]) -> str:
    current = payload.get("current_weather") or {}
    try:
        return iso_hour(datetime.fromisoformat(current["time"]))
    except (KeyError, TypeError, ValueError):
        return iso_hour(datetime.now())


def current_lines(payload: Dict[str, Any], unit: str = "C") -> List[str]:
    """Headline lines: current conditions plus today's sunrise and sunset."""
    current = payload.get("current_weather") or {}
    hourly = payload.get("hourly") or {}
    daily = payload.get("daily") or {}

    label, emoji = describe_weather(current.get("weathercode"))
    i = nearest_index(hourly.get("time") or [], _anchor(payload))
    humidity = _series_value(hourly, "relative_humidity_2m", i)
    wind = current.get("windspeed")

    return [
        f"{emoji} {format_temp(current.get('temperature'), unit)} {label}",
        "  ".join([
            f"Feels {format_temp(_series_value(hourly, 'apparent_temperature', i), unit)}",
            f"Humidity {_round_half_up(humidity)}%" if _is_number(humidity) else f"Humidity {MISSING}",
            f"Wind {_round_half_up(wind)} km/h" if _is_number(wind) else f"Wind {MISSING}",
            f"UV {format_uv(_series_value(hourly, 'uv_index', i))}",
        ]),
        f"Sunrise {format_time(_series_value(daily, 'sunrise', 0))}  Sunset {format_time(_series_value(daily, 'sunset', 0))}",
    ]


def hourly_lines(payload: Dict[str, Any], unit: str = "C", hours: int = 24) -> List[str]:
    hourly = payload.get("hourly") or {}
    times = hourly.get("time") or []
    start = nearest_index(times, _anchor(payload))
    lines = []
    for i in range(start, min(start + hours, len(times))):
        code = _series_value(hourly, "weathercode", i)
        if code is None:
            code = _series_value(hourly, "weather_code", i)
        _, emoji = describe_weather(code)
        precip = _series_value(hourly, "precipitation_probability", i)
        lines.append(
            f"{format_time(times[i])}  {emoji}  {format_temp(_series_value(hourly, 'temperature_2m', i), unit):>5}"
            f"  💧 {precip if _is_number(precip) else 0}%"
        )
    return lines


def daily_lines(payload: Dict[str, Any], unit: str = "C", days: int = 7) -> List[str]:
    daily = payload.get("daily") or {}
    times = daily.get("time") or []
    lines = []
    for i in range(min(days, len(times))):
        code = _series_value(daily, "weather_code", i)
        if code is None:
            code = _series_value(daily, "weathercode", i)
        label, emoji = describe_weather(code)
        precip = _series_value(daily, "precipitation_sum", i)
        temp_range = format_range(
            _series_value(daily, "temperature_2m_min", i),
            _series_value(daily, "temperature_2m_max", i),
            unit,
        )
        lines.append(
            f"{format_date(times[i])}  {emoji} {label}  {temp_range}"
            f"  UV {format_uv(_series_value(daily, 'uv_index_max', i))}"
            f" · 💧 {_round_half_up(precip) if _is_number(precip) else 0}mm"
        )
    return lines


def render_report(result: ForecastResult, unit: str = "C") -> List[str]:
    """
    Build the full text report for a loaded place.

    Args:
        result: Loaded forecast (live or from the offline cache)
        unit: "C" or "F"

    Returns:
        Lines to print, in display order
    """
    lines = [result.display_name]
    if result.offline:
        lines.append("You are offline. Showing last saved data.")
    lines.extend(current_lines(result.payload, unit))
    hours = hourly_lines(result.payload, unit)
    lines.append("")
    lines.append(f"Next {len(hours)} hours")
    lines.extend(hours)
    lines.append("")
    lines.append("7-day forecast")
    lines.extend(daily_lines(result.payload, unit))
    return lines
