# benchmark/run_benchmark.py
"""
Benchmark FPR thực đo so với FPR mục tiêu cho cache username.

- Với mỗi (capacity, error_rate): nạp đúng `capacity` username ngẫu nhiên qua CacheManager
  (backend memory), rồi dò một tập username chưa từng thêm (tách biệt hoàn toàn).
- Multiple runs với avg ± std cho FPR, thời gian nạp, throughput tra cứu, memory (psutil RSS)
- In bảng kết quả (tabulate), xuất CSV (pandas), vẽ biểu đồ (matplotlib)
"""

import os
import random
import string
import time
from typing import List, Set

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import psutil  # noqa: E402
from tabulate import tabulate  # noqa: E402

from usernamebf.config import CacheSettings  # noqa: E402
from usernamebf.manager.cache_manager import CacheManager  # noqa: E402
from usernamebf.store.membership_store import InMemoryMembershipStore  # noqa: E402

SCENARIOS = [(1_000, 0.01), (10_000, 0.01), (10_000, 0.001), (50_000, 0.05)]


def random_username(rng: random.Random, n: int = 10) -> str:
    return "".join(rng.choices(string.ascii_lowercase + string.digits, k=n))


def generate_usernames(rng: random.Random, count: int, exclude: Set[str] = frozenset()) -> List[str]:
    """Sinh `count` username khác nhau, không trùng tập `exclude`."""
    names: Set[str] = set()
    while len(names) < count:
        name = random_username(rng)
        if name not in exclude:
            names.add(name)
    return list(names)


def benchmark_scenario(capacity: int, error_rate: float, probes: int, rng: random.Random) -> dict:
    settings = CacheSettings(capacity=capacity, error_rate=error_rate, backend="memory")
    manager = CacheManager(InMemoryMembershipStore(), settings=settings)
    manager.initialize()

    added = generate_usernames(rng, capacity)
    probe_set = generate_usernames(rng, probes, exclude=set(added))

    start_insert = time.time()
    for name in added:
        manager.add(name)
    insert_duration = time.time() - start_insert

    start_query = time.time()
    false_positives = sum(1 for name in probe_set if manager.might_exist(name))
    query_duration = max(1e-9, time.time() - start_query)

    missed = sum(1 for name in added if not manager.might_exist(name))
    stats = manager.stats()

    return {
        "fpr": false_positives / len(probe_set),
        "false_negatives": missed,
        "insert_time_s": insert_duration,
        "throughput_qps": len(probe_set) / query_duration,
        "memory_kb": psutil.Process().memory_info().rss / 1024,
        "m_bits": stats.bit_array_size,
        "k_hash": stats.hash_count,
    }


def run_full_benchmark(probes: int = 10_000, num_runs: int = 3, seed: int = 7) -> pd.DataFrame:
    """Chạy benchmark cho mọi scenario với multiple runs"""
    rng = random.Random(seed)
    rows = []

    for capacity, error_rate in SCENARIOS:
        runs = []
        for run in range(1, num_runs + 1):
            print(f"[Benchmark] capacity={capacity:,} error_rate={error_rate} run {run}/{num_runs}")
            runs.append(benchmark_scenario(capacity, error_rate, probes, rng))

        fprs = [r["fpr"] for r in runs]
        throughputs = [r["throughput_qps"] for r in runs]
        rows.append({
            "capacity": capacity,
            "target_fpr": error_rate,
            "m_bits": runs[0]["m_bits"],
            "k_hash": runs[0]["k_hash"],
            "fpr_mean": np.mean(fprs),
            "fpr_std": np.std(fprs),
            "fpr_ratio": np.mean(fprs) / error_rate,
            "false_negatives": sum(r["false_negatives"] for r in runs),
            "insert_time_mean_s": np.mean([r["insert_time_s"] for r in runs]),
            "throughput_mean": np.mean(throughputs),
            "throughput_std": np.std(throughputs),
            "memory_mean_kb": np.mean([r["memory_kb"] for r in runs]),
        })

    df = pd.DataFrame(rows)
    print_results(df, num_runs)
    save_results(df)
    plot_results(df)
    return df


def print_results(df: pd.DataFrame, num_runs: int):
    """In bảng kết quả đẹp"""
    table = []
    for _, r in df.iterrows():
        table.append([
            f"{int(r['capacity']):,} @ {r['target_fpr']:.3%}",
            f"{int(r['m_bits']):,} / {int(r['k_hash'])}",
            f"{r['fpr_mean']:.4%} ± {r['fpr_std']:.4%}",
            f"{r['fpr_ratio']:.2f}x",
            int(r["false_negatives"]),
            f"{r['throughput_mean']:,.0f} ± {r['throughput_std']:,.0f} qps",
        ])

    print(f"\n=== KẾT QUẢ BENCHMARK (Avg ± Std over {num_runs} runs) ===")
    print(tabulate(
        table,
        headers=["Scenario", "m / k", "Measured FPR", "vs target", "False neg.", "Throughput"],
        tablefmt="github",
    ))


def save_results(df: pd.DataFrame):
    os.makedirs("plots", exist_ok=True)
    csv_path = "plots/benchmark_fpr.csv"
    df.to_csv(csv_path, index=False)
    print(f"\nKết quả CSV đã lưu tại: {csv_path}")


def plot_results(df: pd.DataFrame):
    """Vẽ FPR thực đo (error bars) cạnh FPR mục tiêu"""
    labels = [f"{int(c):,}\n@{p:.1%}" for c, p in zip(df["capacity"], df["target_fpr"])]
    x = np.arange(len(labels))
    width = 0.38

    fig, ax = plt.subplots(figsize=(10, 6))
    ax.bar(x - width / 2, df["target_fpr"] * 100, width, label="Target", color="orange", alpha=0.8)
    ax.bar(x + width / 2, df["fpr_mean"] * 100, width, yerr=df["fpr_std"] * 100, capsize=5,
           label="Measured", color="green", alpha=0.8)
    ax.set_xticks(x)
    ax.set_xticklabels(labels)
    ax.set_ylabel("False Positive Rate (%)")
    ax.set_title("Username Bloom cache: measured vs target FPR at capacity")
    ax.legend()
    plt.tight_layout()

    os.makedirs("plots", exist_ok=True)
    plot_path = "plots/benchmark_fpr.png"
    plt.savefig(plot_path, dpi=200)
    plt.close(fig)
    print(f"Biểu đồ đã lưu tại: {plot_path}")


if __name__ == "__main__":
    run_full_benchmark(probes=10_000, num_runs=3)
