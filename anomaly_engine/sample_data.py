"""
Sample Telemetry Generator
==========================
Synthetic solar plant telemetry for demos and tests.

Data profiles simulate a fixed-tilt plant:
- Night: zero power
- Daylight: half-sine bell between sunrise and sunset with noise
- 15-minute sampling

Scenarios:
- nominal: clean days, digital twin matches within a few percent
- generation_drop: a sharp dip in power around midday on the last day
- spike: a single implausible power reading
- data_gap: logger offline for two hours
- underperformance: digital twin expects ~25% more energy than measured
"""

from datetime import datetime, timedelta
from typing import Dict, Any, List, Tuple

import numpy as np

SAMPLE_INTERVAL_MINUTES = 15

DEFAULT_PLANT = {
    'peak_power_w': 75000.0,   # 75 kWp plant
    'sunrise_hour': 6.0,
    'sunset_hour': 18.0,
    'noise_pct': 0.02,         # Relative noise on daylight power
}

SCENARIOS = {
    'nominal': 'Clean production with matching digital twin',
    'generation_drop': 'Midday power collapse on the last day',
    'spike': 'Single implausible power reading',
    'data_gap': 'Two-hour logger outage',
    'underperformance': 'Digital twin expects ~25% more energy',
}


def _daylight_profile(hours: np.ndarray, sunrise: float, sunset: float) -> np.ndarray:
    """Half-sine envelope in [0, 1], zero outside daylight."""
    phase = (hours - sunrise) / (sunset - sunrise)
    profile = np.sin(np.pi * phase)
    profile[(phase <= 0) | (phase >= 1)] = 0.0
    return profile


def generate_readings(
    end: datetime,
    days: int = 2,
    scenario: str = 'nominal',
    seed: int = 42,
    plant: Dict[str, Any] = None,
) -> List[Dict[str, Any]]:
    """
    Generate 15-minute readings ending at `end`.

    Returns:
        List of {'timestamp', 'power_w', 'energy_kwh'} dicts, oldest first
    """
    if scenario not in SCENARIOS:
        raise ValueError(f"Unknown scenario: {scenario}")

    plant = {**DEFAULT_PLANT, **(plant or {})}
    rng = np.random.default_rng(seed)

    n_samples = days * 24 * 60 // SAMPLE_INTERVAL_MINUTES
    times = [end - timedelta(minutes=SAMPLE_INTERVAL_MINUTES * i) for i in range(n_samples)][::-1]
    hours = np.array([t.hour + t.minute / 60.0 for t in times])

    profile = _daylight_profile(hours, plant['sunrise_hour'], plant['sunset_hour'])
    noise = rng.normal(0, plant['noise_pct'], n_samples)
    power = plant['peak_power_w'] * profile * (1 + noise)
    power[profile == 0] = 0.0
    power = np.clip(power, 0, None)

    last_day = np.arange(n_samples) >= n_samples - 24 * 60 // SAMPLE_INTERVAL_MINUTES

    if scenario == 'generation_drop':
        dip = last_day & (hours >= 11.5) & (hours < 12.0)
        power[dip] = plant['peak_power_w'] * 0.01
    elif scenario == 'spike':
        daylight_idx = np.where(last_day & (profile > 0.5))[0]
        power[daylight_idx[len(daylight_idx) // 2]] = plant['peak_power_w'] * 6

    energy = power * SAMPLE_INTERVAL_MINUTES / 60.0 / 1000.0

    readings = [
        {'timestamp': t, 'power_w': float(p), 'energy_kwh': float(e)}
        for t, p, e in zip(times, power, energy)
    ]

    if scenario == 'data_gap':
        cut_start = len(readings) - 16
        readings = readings[:cut_start] + readings[cut_start + 8:]

    return readings


def generate_performance_gaps(
    readings: List[Dict[str, Any]],
    scenario: str = 'nominal',
    seed: int = 42,
) -> List[Dict[str, Any]]:
    """
    Hourly digital-twin comparison for the readings.

    Only daylight hours with measurable production produce a record.
    """
    rng = np.random.default_rng(seed + 1)
    hourly: Dict[datetime, float] = {}
    for r in readings:
        hour = r['timestamp'].replace(minute=0, second=0, microsecond=0)
        hourly[hour] = hourly.get(hour, 0.0) + r['energy_kwh']

    gaps = []
    for hour, actual in sorted(hourly.items()):
        if actual < 1.0:
            continue
        if scenario == 'underperformance':
            expected = actual / 0.75
        else:
            expected = actual * (1 + rng.normal(0, 0.02))
        gaps.append({
            'timestamp': hour,
            'expected_kwh': float(expected),
            'actual_kwh': float(actual),
            'gap_percent': float((actual - expected) / expected * 100),
            'gap_kwh': float(actual - expected),
            'probable_causes': ['soiling', 'inverter_clipping'] if scenario == 'underperformance' else [],
        })
    return gaps


def generate_scenario(
    end: datetime,
    scenario: str = 'nominal',
    days: int = 2,
    seed: int = 42,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Readings and performance gaps for one scenario."""
    readings = generate_readings(end, days=days, scenario=scenario, seed=seed)
    gaps = generate_performance_gaps(readings, scenario=scenario, seed=seed)
    return readings, gaps
