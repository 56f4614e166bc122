"""
Batch request simulation against a running classification API.
Sends N synthetic skin-tone JPEG uploads, tallies the returned conditions and
severities, and logs a latency report.

Usage:
    python monitoring/simulate_requests.py --n 20 --url http://localhost:8000
"""

import argparse
import time
import random
import io
import json
from collections import Counter
from datetime import datetime, timezone
import requests
import numpy as np
from PIL import Image


# Rough skin tones so uploads look like lesion photos to a human reviewer
SKIN_TONES = [
    (241, 194, 167),
    (224, 172, 105),
    (198, 134, 66),
    (141, 85, 36),
]


def make_dummy_image(color: tuple, size: int = 224) -> bytes:
    """Generate a synthetic JPEG in memory: flat skin tone with a dark blotch."""
    arr = np.full((size, size, 3), color, dtype=np.uint8)
    c = size // 2
    r = size // 8
    arr[c - r:c + r, c - r:c + r] = (60, 40, 30)
    img = Image.fromarray(arr)
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return buf.getvalue()


def summarize(results: list, n: int) -> dict:
    """Aggregate (condition, severity, confidence, latency) tuples into a report."""
    total = len(results)
    latencies = sorted(l for _, __, ___, l in results)
    report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "total_requests": n,
        "successful": total,
        "conditions": dict(Counter(c for c, _, __, ___ in results)),
        "severities": dict(Counter(s for _, s, __, ___ in results)),
    }
    if total:
        report["avg_confidence"] = round(sum(c for _, __, c, ___ in results) / total, 4)
        report["avg_latency_ms"] = round(sum(latencies) / total * 1000, 2)
        report["p95_latency_ms"] = round(latencies[min(int(0.95 * total), total - 1)] * 1000, 2)
        report["min_latency_ms"] = round(latencies[0] * 1000, 2)
        report["max_latency_ms"] = round(latencies[-1] * 1000, 2)
    return report


def run_simulation(base_url: str, n: int, report_path: str = "monitoring/performance_report.json"):
    classify_url = f"{base_url}/api/classify"
    health_url   = f"{base_url}/health"

    # Check health first
    resp = requests.get(health_url, timeout=5)
    resp.raise_for_status()
    print(f"[Health] {resp.json()}\n")

    results = []   # (condition, severity, confidence, latency)

    for i in range(n):
        img_bytes = make_dummy_image(random.choice(SKIN_TONES))

        start = time.perf_counter()
        try:
            r = requests.post(
                classify_url,
                files={"image": (f"lesion_{i:03d}.jpg", img_bytes, "image/jpeg")},
                timeout=30,
            )
            latency = time.perf_counter() - start

            if r.status_code == 200:
                data = r.json()
                results.append((data["condition"], data["severity"], data["confidence"], latency))
                print(
                    f"  [{i+1:02d}/{n}] condition={data['condition']:<22}  "
                    f"severity={data['severity']:<6}  conf={data['confidence']:.2f}  "
                    f"latency={latency*1000:.1f}ms"
                )
            else:
                print(f"  [{i+1:02d}/{n}] ERROR: HTTP {r.status_code} {r.text}")
        except requests.RequestException as e:
            print(f"  [{i+1:02d}/{n}] EXCEPTION: {e}")

    report = summarize(results, n)

    # ── Summary ───────────────────────────────────────────────────────────────
    print("\n" + "=" * 55)
    print("  Classification Simulation Report")
    print(f"  Generated: {report['timestamp']}")
    print("=" * 55)

    if not results:
        print("  No successful predictions recorded.")
        return report

    print(f"  Total requests     : {n}")
    print(f"  Successful         : {report['successful']}")
    for condition, count in sorted(report["conditions"].items()):
        print(f"  {condition:<19}: {count}")
    print(f"  Avg confidence     : {report['avg_confidence']:.4f}")
    print(f"  Avg latency        : {report['avg_latency_ms']:.1f} ms")
    print(f"  P95 latency        : {report['p95_latency_ms']:.1f} ms")
    print("=" * 55)

    with open(report_path, "w") as f:
        json.dump(report, f, indent=2)
    print(f"\n  Report saved → {report_path}")
    return report


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Simulate batch classification requests")
    parser.add_argument("--n",   type=int, default=20, help="Number of requests")
    parser.add_argument("--url", type=str, default="http://localhost:8000")
    args = parser.parse_args()
    run_simulation(args.url, args.n)
