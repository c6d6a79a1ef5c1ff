"""Shared fixtures for SkyCast tests."""
import pytest


@pytest.fixture
def sample_payload():
    """Trimmed Open-Meteo forecast response for Colombo."""
    hours = [f"2024-05-01T{h:02d}:00" for h in range(24)] + [f"2024-05-02T{h:02d}:00" for h in range(24)]
    return {
        "latitude": 6.9375,
        "longitude": 79.875,
        "timezone": "Asia/Colombo",
        "current_weather": {
            "time": "2024-05-01T14:15",
            "temperature": 31.4,
            "windspeed": 12.2,
            "winddirection": 240,
            "weathercode": 2,
        },
        "hourly": {
            "time": hours,
            "temperature_2m": [27.0 + (h % 24) * 0.2 for h in range(48)],
            "relative_humidity_2m": [70 + (h % 5) for h in range(48)],
            "apparent_temperature": [30.0 + (h % 24) * 0.2 for h in range(48)],
            "precipitation_probability": [10 * (h % 4) for h in range(48)],
            "weathercode": [2] * 48,
            "wind_speed_10m": [11.0] * 48,
            "uv_index": [float(h % 10) for h in range(48)],
        },
        "daily": {
            "time": [f"2024-05-{d:02d}" for d in range(1, 8)],
            "weather_code": [2, 61, 0, 3, 95, 80, 1],
            "temperature_2m_max": [31.9, 30.2, 32.0, 31.1, 29.5, 30.0, 31.0],
            "temperature_2m_min": [25.1, 24.8, 25.5, 25.0, 24.2, 24.9, 25.3],
            "sunrise": [f"2024-05-{d:02d}T05:58" for d in range(1, 8)],
            "sunset": [f"2024-05-{d:02d}T18:21" for d in range(1, 8)],
            "uv_index_max": [10.2, 8.1, 11.0, 9.4, 6.3, 7.7, 10.0],
            "precipitation_sum": [0.0, 12.4, 0.0, 1.2, 30.6, 8.0, 0.4],
        },
    }
