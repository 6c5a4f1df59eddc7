import argparse
import logging
import os
import sys

from colorama import init

from analysis_middleware import analyze
from geo_middleware import GeoDatabaseError, build_geo_provider
from input_middleware import HarFormatError, read_har_domains, read_input_file
from output_middleware import render_table, warn, write_reports
from probe_middleware import build_prober
from progress_middleware import ProgressMiddleware, TqdmLoggingHandler
from resolver_middleware import ResolverConfigError, build_resolver

__version__ = "0.3.0"

log = logging.getLogger("haranalyzer")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False, log_file=None):
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_haranalyzer", False):
            root.removeHandler(h)
            h.close()

    console = TqdmLoggingHandler()
    console._haranalyzer = True
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(console)

    level = logging.DEBUG if verbose else logging.WARNING
    if log_file:
        # file gets INFO even when the console stays at WARNING
        level = min(level, logging.INFO)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        fh._haranalyzer = True
        root.addHandler(fh)
    root.setLevel(level)


def _worker_count(value: str) -> int:
    if str(value).lower() == "auto":
        return os.cpu_count() or 1
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("--threads must be an integer or 'auto'") from None
    if n < 1:
        raise argparse.ArgumentTypeError("--threads must be at least 1")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="har-analyzer",
        description="HAR file analyzer: resolve, ping and geolocate every domain a capture talked to",
        epilog="""Examples:
  har-analyzer analysis -f capture.har
  har-analyzer a -f capture.har --dns 9.9.9.9:53
  har-analyzer a --domains example.com example.org --probe tcp --output report
""",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    a = sub.add_parser(
        "analysis",
        aliases=["a"],
        help="Analyze a HAR file to get the domain list with additional information",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    src = a.add_mutually_exclusive_group()
    src.add_argument("-f", "--har", default="./har.har", help="HAR file (default: ./har.har)")
    src.add_argument("--file", help="Plain text file with domains (one per line)")
    src.add_argument("--domains", nargs="+", help="One or more domains passed directly")

    a.add_argument("-d", "--dns", default=None,
                   help="DNS server as ip[:port] (default: system resolver)")
    a.add_argument("--dns-timeout", type=float, default=None,
                   help="Per-server DNS timeout in seconds (default: HARANALYZER_DNS_TIMEOUT or 3.0)")
    a.add_argument("--threads", type=_worker_count, default="auto",
                   help="Parallel workers: integer or 'auto' = CPU count (default: auto)")
    a.add_argument("--probe", choices=["icmp", "tcp"], default="icmp",
                   help="Latency probe: 'icmp' = one ping, 'tcp' = one TCP connect (default: icmp)")
    a.add_argument("--probe-timeout", type=float, default=None,
                   help="Probe timeout in seconds (default: HARANALYZER_PROBE_TIMEOUT or 1.0)")
    a.add_argument("--probe-port", type=int, default=443, help="Port for --probe tcp (default: 443)")
    a.add_argument("--geoip-db", default=None,
                   help="GeoLite2 City database (default: ~/.geolite2/GeoLite2-City.mmdb, fetched if absent)")
    a.add_argument("--geoip-url", default=None, help="Download URL used when the database is missing")
    a.add_argument("--output", default=None, help="Also write <OUTPUT>.json and <OUTPUT>.csv")
    a.add_argument("--quiet", action="store_true", help="Disable progress bar output")
    a.add_argument("--logfile", default=None, help="Optional log file")
    a.add_argument("--color", action="store_true", help="Colorize errors in the table")
    a.add_argument("--verbose", action="store_true", default=argparse.SUPPRESS, help="Verbose log")
    a.set_defaults(func=run_analysis)
    return parser


def _load_domains(args) -> list:
    if args.domains:
        seen = []
        for d in args.domains:
            d = d.strip().lower().rstrip(".")
            if d and d not in seen:
                seen.append(d)
        return seen
    if args.file:
        return read_input_file(args.file)
    return read_har_domains(args.har)


def run_analysis(args) -> int:
    try:
        domains = _load_domains(args)
    except HarFormatError as e:
        warn(str(e), color=args.color)
        log.info("run aborted: %s", e)
        return 1

    if not domains:
        print("No domains found.", file=sys.stderr)
        return 2
    log.info("loaded %d domains", len(domains))

    try:
        if args.dns_timeout is not None:
            resolver = build_resolver(args.dns, timeout=args.dns_timeout)
        else:
            resolver = build_resolver(args.dns)
        geo = build_geo_provider(args.geoip_db, args.geoip_url)
    except (ResolverConfigError, GeoDatabaseError) as e:
        warn(str(e), color=args.color)
        log.info("run aborted: %s", e)
        return 1

    prober = build_prober(args.probe, timeout=args.probe_timeout, port=args.probe_port)
    log.info("resolver=%s probe=%s workers=%d", resolver.describe(), prober.method, args.threads)

    with geo, ProgressMiddleware(total=len(domains), disable=args.quiet) as progress:
        records = analyze(domains, resolver, geo, prober=prober, max_workers=args.threads, progress=progress)

    failed = sum(1 for r in records if r.error)
    log.info("analyzed %d domains, %d with errors", len(records), failed)

    print(render_table(records, color=args.color))

    if args.output:
        write_reports(records, args.output)
        log.info("wrote %s.json and %s.csv", args.output, args.output)
    return 0


def main(argv=None) -> int:
    # Windows-friendly colors
    init(autoreset=True)

    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        setup_logging(getattr(args, "verbose", False), getattr(args, "logfile", None))
    except OSError as e:
        warn(f"cannot open log file {args.logfile}: {e}", color=getattr(args, "color", False))
        return 2
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
