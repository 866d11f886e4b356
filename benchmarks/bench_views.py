import argparse
import statistics
import time
from typing import Callable, Iterable, Tuple

import numpy as np
from ndview.backend import compaction
from ndview.backend import device as backend_device
from ndview.backend import ndarray as nd


def time_many(
    fn: Callable[[], None], repeats: int, warmup: int = 1
) -> Tuple[float, float, float]:
    # warmup
    for _ in range(warmup):
        fn()
    times = []
    for _ in range(repeats):
        t0 = time.perf_counter()
        fn()
        t1 = time.perf_counter()
        times.append((t1 - t0) * 1000.0)  # ms
    return min(times), statistics.median(times), max(times)


def numpy_matmul_time(
    m: int, n: int, p: int, repeats: int, warmup: int
) -> Tuple[float, float, float]:
    a = np.random.randn(m, n).astype(np.float32)
    b = np.random.randn(n, p).astype(np.float32)

    def run() -> None:
        c = a @ b
        # use the result to avoid optimizer elision
        _ = c[0, 0]

    return time_many(run, repeats=repeats, warmup=warmup)


def device_matmul_time(
    dev: backend_device.Device, m: int, n: int, p: int, repeats: int, warmup: int
) -> Tuple[float, float, float]:
    a = nd.array(np.random.randn(m, n), device=dev)
    b = nd.array(np.random.randn(n, p), device=dev)

    def run() -> None:
        # the dispatcher synchronizes before returning
        _ = a @ b

    return time_many(run, repeats=repeats, warmup=warmup)


def view_tax_time(
    dev: backend_device.Device, m: int, n: int, repeats: int, warmup: int
) -> Tuple[Tuple[float, float, float], Tuple[float, float, float]]:
    """Time compaction of a compact array and of its transposed view."""
    a = nd.array(np.random.randn(m, n), device=dev)
    t = a.permute((1, 0))

    def run_compact() -> None:
        compaction.compact(a)

    def run_transposed() -> None:
        compaction.compact(t)

    return (
        time_many(run_compact, repeats=repeats, warmup=warmup),
        time_many(run_transposed, repeats=repeats, warmup=warmup),
    )


def parse_sizes(s: str) -> Iterable[Tuple[int, int, int]]:
    """
    Parse sizes of the form:
      - single int: k  -> (k, k, k)
      - triple: m,n,p
      - multiple groups separated by spaces,
        e.g. "64 128" or "64,32,16 128,128,64"
    """
    groups = s.strip().split()
    for g in groups:
        parts = [int(x) for x in g.split(",")]
        if len(parts) == 1:
            k = parts[0]
            yield (k, k, k)
        elif len(parts) == 3:
            yield (parts[0], parts[1], parts[2])
        else:
            raise ValueError(f"Invalid size group: {g}")


def _fmt(t: Tuple[float, float, float]) -> str:
    return f"{t[0]:8.2f}/{t[1]:8.2f}/{t[2]:8.2f}"


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Benchmark matmul and view compaction per ndview device"
    )
    parser.add_argument(
        "--sizes",
        type=str,
        default="32 64 128",
        help='Space-separated sizes. Each can be "k" or "m,n,p".\
              Example: "64 128,64,32".',
    )
    parser.add_argument(
        "--devices",
        type=str,
        default="cpu_numpy,reference",
        help="Comma-separated device names",
    )
    parser.add_argument(
        "--repeats", type=int, default=5, help="Number of timed runs per case"
    )
    parser.add_argument("--warmup", type=int, default=1, help="Warmup runs per case")
    parser.add_argument("--seed", type=int, default=0, help="Random seed")
    args = parser.parse_args()

    np.random.seed(args.seed)
    devices = [backend_device.get_device(name) for name in args.devices.split(",")]

    print("Device(s):")
    for dev in devices:
        print(f"  - {dev}")
    print()

    header = (
        f"{'Size (m,n,p)':>16} | {'device':>10} | {'matmul ms (min/med/max)':>28}"
        f" | {'compact ms (min/med/max)':>28} | {'transposed ms (min/med/max)':>28}"
        f" | {'view tax (med)':>14}"
    )
    print(header)
    print("-" * len(header))

    for m, n, p in parse_sizes(args.sizes):
        baseline = numpy_matmul_time(m, n, p, repeats=args.repeats, warmup=args.warmup)
        print(f"{(m, n, p)!s:>16} | {'numpy':>10} | {_fmt(baseline):>28}")
        for dev in devices:
            mm = device_matmul_time(
                dev, m, n, p, repeats=args.repeats, warmup=args.warmup
            )
            plain, transposed = view_tax_time(
                dev, m, n, repeats=args.repeats, warmup=args.warmup
            )
            tax = transposed[1] / plain[1] if plain[1] > 0 else float("inf")
            print(
                f"{(m, n, p)!s:>16} | {dev.name:>10} | {_fmt(mm):>28}"
                f" | {_fmt(plain):>28} | {_fmt(transposed):>28} | {tax:>13.2f}x"
            )


if __name__ == "__main__":
    main()
