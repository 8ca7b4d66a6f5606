#!/usr/bin/env python3
"""Tourist telemetry simulator.

Walks a crowd of simulated tourists around a city and streams their
telemetry to the anomaly service, occasionally injecting an incident
(fall, panic, wrong turn, vehicle ride) so the dashboard has something
to show.

Usage:
    # 5 tourists walking around Jaipur for 10 minutes
    python -m tools.simulator.simulate --server http://localhost:8001 --tourists 5 --duration 600

    # Train the model on ordinary walking first, then stream
    python -m tools.simulator.simulate --server http://localhost:8001 --train 500

    # Stress test: 50 tourists, fast reporting, frequent incidents
    python -m tools.simulator.simulate --tourists 50 --samples-per-minute 60 --incident-rate 0.05
"""

from __future__ import annotations

import argparse
import asyncio
import math
import random
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

INCIDENTS = ("fall", "panic", "deviation", "vehicle", "alert_zone")


@dataclass
class SimTourist:
    tourist_id: str
    lat: float
    lng: float
    bearing: float
    speed_kmh: float
    battery: float
    deviation_m: float = 0.0
    samples_sent: int = 0
    anomalies: int = 0
    errors: int = 0


def ordinary_record() -> dict:
    """One sample of ordinary walking, in the shape /train expects."""
    return {
        "speed": round(random.uniform(2.0, 7.0), 2),
        "deviationMeters": round(random.uniform(0.0, 80.0), 1),
        "accelerometer_magnitude": round(random.gauss(1.05, 0.08), 3),
        "location_risk_score": round(random.uniform(0.0, 3.0), 2),
        "points_last_5m": random.randint(2, 8),
    }


def move_tourist(tourist: SimTourist, dt_seconds: float) -> None:
    """Stroll along the current bearing with gentle turns."""
    tourist.bearing = (tourist.bearing + random.uniform(-20, 20)) % 360
    tourist.speed_kmh = max(0.5, min(7.0, tourist.speed_kmh + random.uniform(-0.5, 0.5)))
    tourist.deviation_m = max(0.0, min(150.0, tourist.deviation_m + random.uniform(-15, 15)))
    tourist.battery = max(1.0, tourist.battery - random.uniform(0.0, 0.05))

    distance_m = tourist.speed_kmh / 3.6 * dt_seconds
    bearing_rad = math.radians(tourist.bearing)

    # Approximate: 1 degree latitude ≈ 111,000 m
    dlat = (distance_m * math.cos(bearing_rad)) / 111_000
    dlng = (distance_m * math.sin(bearing_rad)) / (111_000 * math.cos(math.radians(tourist.lat)))

    tourist.lat += dlat
    tourist.lng += dlng


def make_sample(tourist: SimTourist, incident: str | None = None) -> dict:
    """Create a telemetry payload, optionally with an incident injected."""
    sample = {
        "touristId": tourist.tourist_id,
        "ts": datetime.now(timezone.utc).isoformat(),
        "lat": round(tourist.lat, 6),
        "lng": round(tourist.lng, 6),
        "speed": round(tourist.speed_kmh, 2),
        "deviationMeters": round(tourist.deviation_m, 1),
        "in_alert_zone": 0,
        "location_risk_score": round(random.uniform(0.5, 2.5), 2),
        "accelerometer_magnitude": round(random.gauss(1.05, 0.08), 3),
        "battery_level": round(tourist.battery, 1),
        "panic_button_pressed": False,
    }
    if incident == "fall":
        sample["accelerometer_magnitude"] = round(random.uniform(3.5, 6.0), 2)
        sample["speed"] = 0.0
    elif incident == "panic":
        sample["panic_button_pressed"] = True
    elif incident == "deviation":
        sample["deviationMeters"] = round(random.uniform(800, 3000), 1)
    elif incident == "vehicle":
        sample["speed"] = round(random.uniform(130, 200), 1)
    elif incident == "alert_zone":
        sample["in_alert_zone"] = 1
        sample["location_risk_score"] = round(random.uniform(7.0, 10.0), 1)
    return sample


async def run_tourist(
    client: httpx.AsyncClient,
    tourist: SimTourist,
    server_url: str,
    samples_per_minute: float,
    duration_seconds: float,
    incident_rate: float,
) -> None:
    """Simulate a single tourist reporting telemetry."""
    interval = 60.0 / samples_per_minute
    end_time = time.monotonic() + duration_seconds

    while time.monotonic() < end_time:
        move_tourist(tourist, interval)
        incident = random.choice(INCIDENTS) if random.random() < incident_rate else None

        try:
            resp = await client.post(f"{server_url}/predict", json=make_sample(tourist, incident))
            if resp.status_code == 200:
                tourist.samples_sent += 1
                if resp.json().get("is_anomaly"):
                    tourist.anomalies += 1
            else:
                tourist.errors += 1
        except httpx.RequestError:
            tourist.errors += 1

        await asyncio.sleep(interval)


async def train_model(client: httpx.AsyncClient, server_url: str, count: int) -> None:
    records = [ordinary_record() for _ in range(count)]
    resp = await client.post(f"{server_url}/train", json={"data": records})
    if resp.status_code == 200:
        print(f"Model trained: {resp.json()['version']}")
    else:
        print(f"Training failed ({resp.status_code}): {resp.text}")


async def run_simulation(args: argparse.Namespace) -> None:
    """Run the full simulation."""
    center_lat, center_lng = args.center
    tourists = []
    for _ in range(args.tourists):
        # Scatter tourists within radius of center
        angle = random.uniform(0, 2 * math.pi)
        dist_km = random.uniform(0, args.radius_km)
        lat = center_lat + (dist_km / 111.0) * math.cos(angle)
        lng = center_lng + (dist_km / (111.0 * math.cos(math.radians(center_lat)))) * math.sin(angle)

        tourists.append(SimTourist(
            tourist_id=f"sim-{uuid.uuid4().hex[:12]}",
            lat=lat,
            lng=lng,
            bearing=random.uniform(0, 360),
            speed_kmh=random.uniform(3, 5),
            battery=random.uniform(20, 100),
        ))

    print(f"Starting simulation: {args.tourists} tourists, {args.samples_per_minute} samples/min each")
    print(f"  Center: {center_lat:.4f}, {center_lng:.4f}")
    print(f"  Radius: {args.radius_km} km")
    print(f"  Duration: {args.duration}s")
    print(f"  Incident rate: {args.incident_rate:.0%}")
    print(f"  Server: {args.server}")
    print()

    start = time.monotonic()

    async with httpx.AsyncClient(timeout=30.0) as client:
        if args.train:
            await train_model(client, args.server, args.train)

        tasks = [
            run_tourist(client, t, args.server, args.samples_per_minute,
                        args.duration, args.incident_rate)
            for t in tourists
        ]
        await asyncio.gather(*tasks)

        elapsed = time.monotonic() - start
        total_samples = sum(t.samples_sent for t in tourists)
        total_anomalies = sum(t.anomalies for t in tourists)
        total_errors = sum(t.errors for t in tourists)

        print(f"\nSimulation complete in {elapsed:.1f}s")
        print(f"  Total samples sent: {total_samples}")
        print(f"  Anomalies flagged: {total_anomalies}")
        print(f"  Total errors: {total_errors}")
        print(f"  Throughput: {total_samples / elapsed:.1f} samples/sec")

        try:
            resp = await client.get(f"{args.server}/statistics")
        except httpx.RequestError as exc:
            print(f"\nCould not fetch service statistics: {exc}")
            return
        if resp.status_code == 200:
            stats = resp.json()
            print("\nService statistics:")
            print(f"  Model loaded: {stats['model_loaded']} ({stats['model_version']})")
            print(f"  Records processed: {stats['total_records_processed']}")
            print(f"  Tourists monitored: {stats['total_tourists_monitored']}")
            print(f"  Anomalies by type: {stats['anomalies_by_type']}")


def main():
    parser = argparse.ArgumentParser(description="Tourist telemetry simulator")
    parser.add_argument("--server", default="http://localhost:8001", help="Server URL")
    parser.add_argument("--tourists", type=int, default=5, help="Number of simulated tourists")
    parser.add_argument("--duration", type=int, default=60, help="Simulation duration in seconds")
    parser.add_argument("--samples-per-minute", type=float, default=6,
                        help="Telemetry samples per minute per tourist")
    parser.add_argument("--incident-rate", type=float, default=0.02,
                        help="Probability that a sample carries an incident")
    parser.add_argument("--train", type=int, default=0,
                        help="Train the model on this many ordinary records first")
    parser.add_argument("--center", type=str, default="26.9124,75.7873",
                        help="Center lat,lng (default: Jaipur)")
    parser.add_argument("--radius-km", type=float, default=3.0, help="Scatter radius in km")

    args = parser.parse_args()

    lat, lng = args.center.split(",")
    args.center = (float(lat), float(lng))

    asyncio.run(run_simulation(args))


if __name__ == "__main__":
    main()
