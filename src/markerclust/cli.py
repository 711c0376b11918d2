from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .batch import BatchOrchestrator
from .clustering import cluster_summary
from .doctor import collect_checks
from .models import DEFAULT_PRIMER_OFFSET, ScreenSettings
from .pipeline import cluster_samples, run_pipeline
from .primitives import PrimitiveError
from .store import SQLiteReadStore, StoreError
from .toy_data import TOY_MARKER, make_toy_store
from .utils import ensure_outdir


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    if isinstance(err, PrimitiveError):
        msg = f"{err.primitive} failed: {err}"
    else:
        msg = f"{err.__class__.__name__}: {err}"

    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def _add_store_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument("--store", required=True, type=_path_exists, help="SQLite read store.")
    p.add_argument(
        "--sample",
        action="append",
        default=None,
        help="Restrict to this sample (repeatable; default: all samples).",
    )


def _add_screen_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--marker", required=True, help="Marker pattern to screen for (IUPAC).")
    p.add_argument("--threshold", type=float, default=0.001, help="Error probability threshold for trimming.")
    p.add_argument("--window", type=int, default=21, help="Moving-average window width for trimming.")
    p.add_argument(
        "--primer-offset",
        type=int,
        default=DEFAULT_PRIMER_OFFSET,
        help="Earliest allowed trim start (forward primer length + 1).",
    )
    p.add_argument("--max-mismatches", type=int, default=4, help="Edits tolerated per marker match.")
    p.add_argument("--no-indels", action="store_true", help="Only allow substitutions in marker matches.")
    p.add_argument(
        "--literal-ambiguity",
        action="store_true",
        help="Treat IUPAC ambiguity codes in reads literally instead of as wildcards.",
    )
    p.add_argument("--batch-size", type=int, default=10_000, help="Reads per batch.")


def _add_cluster_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--min-length", type=int, default=100, help="Minimum trimmed length to cluster a read.")
    p.add_argument(
        "--cutoff",
        type=float,
        default=0.03,
        help="Maximum fractional distance to a cluster representative.",
    )


def _add_common_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--no-progress", action="store_true", help="Disable progress bars.")
    p.add_argument("--dry-run", action="store_true", help="Validate inputs and print the plan.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="markerclust",
        description=(
            "markerclust: batched quality trimming, marker screening and per-sample "
            "identity clustering of reads held in a SQLite read store."
        ),
    )
    p.add_argument("--version", action="version", version=f"markerclust {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # quickstart
    # -----------------
    sub.add_parser("quickstart", help="Print ready-to-run recipes.")

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser("make-toy-data", help="Generate a small read store for demos/tests.")
    t.add_argument("--out", required=True, help="Path of the SQLite store to create.")
    t.add_argument("--seed", type=int, default=7, help="Random seed.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    # -----------------
    # screen
    # -----------------
    s = sub.add_parser("screen", help="Trim reads and count marker matches, batch by batch.")
    _add_store_arg(s)
    _add_screen_args(s)
    _add_common_args(s)

    # -----------------
    # cluster
    # -----------------
    c = sub.add_parser("cluster", help="Cluster screened reads per sample (first-fit).")
    _add_store_arg(c)
    _add_cluster_args(c)
    _add_common_args(c)

    # -----------------
    # run
    # -----------------
    r = sub.add_parser("run", help="Screen, then cluster each sample.")
    _add_store_arg(r)
    _add_screen_args(r)
    _add_cluster_args(r)
    r.add_argument("--outdir", required=True, help="Output directory for summary.json and logs.")
    _add_common_args(r)

    # -----------------
    # summary
    # -----------------
    m = sub.add_parser("summary", help="Print stored cluster sizes per sample as JSON.")
    _add_store_arg(m)

    # -----------------
    # doctor
    # -----------------
    d = sub.add_parser("doctor", help="Check that required libraries import correctly.")
    d.add_argument("--dry-run", action="store_true", help="Print checks without exiting nonzero.")
    d.add_argument("-v", "--verbose", action="count", default=0, help="Increase verbosity (-v/-vv).")

    return p


def _settings_from_args(args: argparse.Namespace) -> ScreenSettings:
    return ScreenSettings(
        marker_pattern=getattr(args, "marker", ""),
        threshold=float(getattr(args, "threshold", 0.001)),
        window_width=int(getattr(args, "window", 21)),
        primer_offset=int(getattr(args, "primer_offset", DEFAULT_PRIMER_OFFSET)),
        max_mismatches=int(getattr(args, "max_mismatches", 4)),
        allow_indels=not bool(getattr(args, "no_indels", False)),
        ambiguity_as_pattern=not bool(getattr(args, "literal_ambiguity", False)),
        batch_size=int(getattr(args, "batch_size", 10_000)),
        min_length=int(getattr(args, "min_length", 100)),
        identity_cutoff=float(getattr(args, "cutoff", 0.03)),
    )


def _check_samples(store: SQLiteReadStore, samples: Optional[list[str]]) -> list[str]:
    available = store.samples()
    if samples is None:
        return available
    unknown = [s for s in samples if s not in available]
    if unknown:
        raise StoreError(f"Unknown sample(s): {', '.join(unknown)}")
    return list(samples)


# -----------------
# Command handlers
# -----------------

def cmd_quickstart() -> int:
    lines = [
        "markerclust quickstart (copy/paste):",
        "",
        "1) Try it on toy data:",
        "   markerclust make-toy-data --out toy/reads.sqlite",
        f"   markerclust run --store toy/reads.sqlite --marker {TOY_MARKER} --outdir toy_run/",
        "   Outputs: toy_run/summary.json, toy_run/logs/",
        "",
        "2) Two phases, one sample at a time:",
        "   markerclust screen --store reads.sqlite --marker <PATTERN> --sample S1",
        "   markerclust cluster --store reads.sqlite --sample S1 --cutoff 0.03",
        "",
        "3) Inspect cluster sizes:",
        "   markerclust summary --store reads.sqlite",
        "",
        "Tip: use --dry-run to validate inputs and print the plan.",
    ]
    print("\n".join(lines))
    return 0


def cmd_make_toy_data(args: argparse.Namespace) -> int:
    out = Path(args.out).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy read store: {out}")
        return 0
    if out.exists():
        return _handle_error(FileExistsError(f"Refusing to overwrite existing store: {out}"))

    summary = make_toy_store(out, seed=int(args.seed))
    print(json.dumps(summary, indent=2))
    return 0


def cmd_screen(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)
    logger = logging.getLogger("markerclust")
    logger.info("markerclust %s", __version__)

    try:
        settings = _settings_from_args(args)
        settings.validate()
        with SQLiteReadStore(args.store, create=False) as store:
            samples = _check_samples(store, args.sample)
            if args.dry_run:
                print("Dry-run: inputs look OK.")
                for s in samples:
                    n = store.count(s)
                    print(f"  {s}: {n} reads, {-(-n // settings.batch_size)} batches")
                return 0

            orchestrator = BatchOrchestrator(store, settings, progress=not args.no_progress)
            summaries = {s: orchestrator.run(sample=s) for s in samples}

        print(json.dumps({s: v["counts"] for s, v in summaries.items()}, indent=2, sort_keys=True))
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_cluster(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    try:
        settings = _settings_from_args(args)
        if not 0.0 <= settings.identity_cutoff <= 1.0:
            raise ValueError("--cutoff must be in [0, 1]")
        if settings.min_length < 1:
            raise ValueError("--min-length must be >= 1")
        with SQLiteReadStore(args.store, create=False) as store:
            samples = _check_samples(store, args.sample)
            if args.dry_run:
                print("Dry-run: inputs look OK.")
                print(f"Would cluster {len(samples)} sample(s) at cutoff {settings.identity_cutoff}:")
                for s in samples:
                    print(f"  {s}")
                return 0

            result = cluster_samples(store, settings, samples=samples, progress=not args.no_progress)

        print(json.dumps({s: v["clusters"] for s, v in result.items()}, indent=2, sort_keys=True))
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_run(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, "run.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("markerclust")
    logger.info("markerclust %s", __version__)

    try:
        settings = _settings_from_args(args)
        settings.validate()
        with SQLiteReadStore(args.store, create=False) as store:
            samples = _check_samples(store, args.sample)
            if args.dry_run:
                print("Dry-run: inputs look OK.")
                print(f"Samples: {', '.join(samples) if samples else '(none)'}")
                print("Planned outputs:")
                print(f"  summary.json -> {outdir / 'summary.json'}")
                print(f"  logs -> {outdir / 'logs'}")
                return 0

            ensure_outdir(outdir)
            summary = run_pipeline(
                store,
                settings,
                samples=args.sample,
                outdir=outdir,
                progress=not args.no_progress,
            )

        logger.info("Screened %d sample(s), clustered %d", len(summary["screening"]), len(summary["clustering"]))
        print(str(outdir / "summary.json"))
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def cmd_summary(args: argparse.Namespace) -> int:
    try:
        with SQLiteReadStore(args.store, create=False) as store:
            samples = _check_samples(store, args.sample)
            out = {s: cluster_summary(store, s) for s in samples}
        print(json.dumps(out, indent=2, sort_keys=True))
        return 0
    except Exception as e:
        return _handle_error(e)


def cmd_doctor(args: argparse.Namespace) -> int:
    _setup_logging(args.verbose, logfile=None)

    checks = collect_checks()

    lines = []
    ok_all = True
    for name, r in checks.items():
        status = "OK" if r.ok else "MISSING"
        lines.append(f"{name:7s} : {status:7s}  {r.detail}")
        if not r.ok:
            ok_all = False

    print("\n".join(lines))

    for name, r in checks.items():
        if not r.ok and r.howto:
            print("\n---")
            print(f"How to install/fix '{name}':")
            print(r.howto)

    if args.dry_run:
        return 0
    return 0 if ok_all else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "quickstart":
        return cmd_quickstart()
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)
    if args.cmd == "screen":
        return cmd_screen(args)
    if args.cmd == "cluster":
        return cmd_cluster(args)
    if args.cmd == "run":
        return cmd_run(args)
    if args.cmd == "summary":
        return cmd_summary(args)
    if args.cmd == "doctor":
        return cmd_doctor(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
